"""Tests for WebSocket feed streaming."""
import asyncio
import orjson
import pytest
from unittest.mock import AsyncMock
from starlette.testclient import TestClient
from tokenfeed.main import app
from tokenfeed.metrics import Metrics
from tokenfeed.services.normalizer import normalize
from tokenfeed.session import FeedSession
from tokenfeed.streaming.websocket import FeedStreamManager


@pytest.mark.asyncio
async def test_manager_tracks_connections(ledger, settings):
    """Connections are counted and reflected in the gauge."""
    session = FeedSession(ledger, settings=settings, metrics=Metrics())
    manager = FeedStreamManager(session)
    mock_ws = AsyncMock()

    snapshot = await manager.connect(mock_ws)
    assert snapshot == []
    assert manager.connection_count == 1
    assert session.metrics.registry.get_sample_value("tokenfeed_websocket_connections") == 1

    manager.disconnect(mock_ws)
    assert manager.connection_count == 0


@pytest.mark.asyncio
async def test_manager_forwards_live_records(ledger, settings, approval):
    """Live records are broadcast to connected clients."""
    session = FeedSession(ledger, settings=settings, metrics=Metrics())
    await session.start()
    manager = FeedStreamManager(session)
    manager.start()
    mock_ws = AsyncMock()
    await manager.connect(mock_ws)

    await ledger.emit(approval(3, value=2 * 10**18))
    await session.merger.drain()
    for _ in range(3):
        await asyncio.sleep(0)

    mock_ws.send_bytes.assert_awaited_once()
    message = orjson.loads(mock_ws.send_bytes.await_args.args[0])
    assert message["type"] == "record"
    assert message["data"]["block_index"] == 3
    assert message["data"]["amount_display"] == "2.0"

    await manager.stop()
    await session.close()


@pytest.mark.asyncio
async def test_manager_drops_failed_connections(ledger, settings, transfer):
    """Clients whose send fails are dropped."""
    session = FeedSession(ledger, settings=settings, metrics=Metrics())
    manager = FeedStreamManager(session)
    broken = AsyncMock()
    broken.send_bytes.side_effect = RuntimeError("socket closed")
    await manager.connect(broken)

    await manager.broadcast_record(normalize(transfer(1)).with_timestamp("t1"))

    assert manager.connection_count == 0


def test_websocket_welcome_and_ping_pong():
    """Clients get a welcome message and ping replies."""
    with TestClient(app) as client:
        with client.websocket_connect("/ws/feed") as websocket:
            welcome = websocket.receive_json()
            assert welcome["type"] == "welcome"
            assert "status" in welcome
            assert isinstance(welcome["records"], list)

            websocket.send_text("ping")
            assert websocket.receive_text() == "pong"


@pytest.mark.asyncio
async def test_pump_keeps_forwarding_after_falling_behind(ledger, settings, transfer):
    """Records appended after the pump queue overflowed still reach clients."""
    settings.LIVE_QUEUE_SIZE = 2
    session = FeedSession(ledger, settings=settings, metrics=Metrics())
    manager = FeedStreamManager(session)
    manager.start()
    mock_ws = AsyncMock()
    await manager.connect(mock_ws)

    # no yield between appends, so the pump's queue overflows
    for block in (1, 2, 3, 4):
        session.feed.append(normalize(transfer(block)).with_timestamp(f"t{block}"))
    for _ in range(3):
        await asyncio.sleep(0)

    session.feed.append(normalize(transfer(5)).with_timestamp("t5"))
    for _ in range(3):
        await asyncio.sleep(0)

    sent = [orjson.loads(call.args[0])["data"]["block_index"] for call in mock_ws.send_bytes.await_args_list]
    assert sent == [3, 4, 5]

    await manager.stop()
    await session.close()
