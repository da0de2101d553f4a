"""WebSocket feed streaming with keepalive."""
import asyncio
import time
import structlog
from fastapi import WebSocket, WebSocketDisconnect
from typing import Set
from ..api.schemas import FeedRecordView
from ..event_models import NormalizedEvent
from ..session import FeedSession
import orjson

log = structlog.get_logger()


class FeedStreamManager:
    """
    Pushes feed records to connected WebSocket clients.

    A single pump task listens on the session's feed and broadcasts every
    appended record; clients that fail a send are dropped. The pump stays
    attached when it falls behind, losing the oldest queued records instead.
    """

    def __init__(self, session: FeedSession):
        self._session = session
        self._connections: Set[WebSocket] = set()
        self._pump: asyncio.Task | None = None

    def start(self):
        """Start forwarding appended records."""
        if self._pump is None:
            queue = self._session.feed.listen(drop_oldest=True)
            self._pump = asyncio.create_task(self._forward(queue), name="tokenfeed-ws-pump")

    async def stop(self):
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None

    async def _forward(self, queue: asyncio.Queue):
        try:
            while True:
                record = await queue.get()
                await self.broadcast_record(record)
        finally:
            self._session.feed.unlisten(queue)

    async def connect(self, websocket: WebSocket) -> list[dict]:
        """
        Accept a connection and register it.

        Returns:
            The feed snapshot taken at registration, as JSON-ready dicts
        """
        await websocket.accept()
        snapshot = self._session.feed.snapshot()
        self._connections.add(websocket)
        self._set_gauge()
        log.info("websocket.connected", total_connections=len(self._connections))
        return [self._view(r) for r in snapshot]

    def disconnect(self, websocket: WebSocket):
        self._connections.discard(websocket)
        self._set_gauge()
        log.info("websocket.disconnected", total_connections=len(self._connections))

    async def broadcast_record(self, record: NormalizedEvent):
        """
        Broadcast a record to all connected clients.

        Args:
            record: Record just appended to the feed
        """
        if not self._connections:
            return

        message = orjson.dumps({"type": "record", "data": self._view(record)})

        disconnected = set()
        for connection in list(self._connections):
            try:
                await connection.send_bytes(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                log.warning("websocket.send_failed", error=str(e))
                disconnected.add(connection)

        for conn in disconnected:
            self.disconnect(conn)

    async def send_ping(self, websocket: WebSocket):
        try:
            await websocket.send_json({"type": "ping", "ts": time.time()})
        except (WebSocketDisconnect, RuntimeError) as e:
            log.warning("websocket.ping_failed", error=str(e))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def _view(self, record: NormalizedEvent) -> dict:
        decimals = self._session.settings.TOKEN_DECIMALS
        return FeedRecordView.from_record(record, decimals).model_dump(mode="json")

    def _set_gauge(self):
        self._session.metrics.websocket_connections.set(len(self._connections))


async def handle_websocket_stream(
    websocket: WebSocket,
    manager: FeedStreamManager,
    session: FeedSession,
    ping_interval: int = 30,
):
    """
    Handle one feed stream connection.

    Args:
        websocket: WebSocket connection
        manager: Stream manager that broadcasts new records
        session: Session whose status is reported on connect
        ping_interval: Seconds between ping messages (keepalive)
    """
    snapshot = await manager.connect(websocket)

    try:
        await websocket.send_json({
            "type": "welcome",
            "status": session.status(),
            "records": snapshot,
        })

        last_ping = time.time()

        while True:
            if time.time() - last_ping > ping_interval:
                await manager.send_ping(websocket)
                last_ping = time.time()

            try:
                # Timeout to allow periodic ping checks
                message = await asyncio.wait_for(websocket.receive_text(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            if message == "pong":
                log.debug("websocket.pong_received")
            elif message == "ping":
                await websocket.send_text("pong")

    except WebSocketDisconnect:
        log.info("websocket.client_disconnected")
    finally:
        manager.disconnect(websocket)
