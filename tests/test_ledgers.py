"""Tests for ledger adapters."""
import asyncio
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from hexbytes import HexBytes
from conftest import ALICE, BOB, CAROL
from tokenfeed.config import Settings
from tokenfeed.errors import LedgerError
from tokenfeed.event_models import ZERO_ADDRESS, ApprovalEvent, EventKind, TransferEvent
from tokenfeed.ledger import InMemoryLedger, Web3Ledger, create_ledger
from tokenfeed.ledger.web3_ledger import decode_log

TOKEN = "0x" + "d4" * 20


class FakeEth:
    """Stands in for AsyncEth: block_number is an awaitable property."""

    def __init__(self, contract, head=0, timestamps=None):
        self._contract = contract
        self.head = head
        self.timestamps = timestamps or {}
        self.get_block = AsyncMock(side_effect=self._get_block)

    @property
    async def block_number(self):
        return self.head

    async def _get_block(self, block_index):
        return {"number": block_index, "timestamp": self.timestamps[block_index]}

    def contract(self, address, abi):
        return self._contract


def make_log(block_number, log_index=0, **args):
    return {
        "args": args,
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionHash": HexBytes(b"\x01" * 32),
    }


@pytest.fixture
def contract():
    contract = MagicMock()
    contract.events.Transfer.get_logs = AsyncMock(return_value=[])
    contract.events.Approval.get_logs = AsyncMock(return_value=[])
    return contract


@pytest.fixture
def web3_ledger(contract):
    eth = FakeEth(contract, head=20, timestamps={20: 1_700_000_240})
    w3 = SimpleNamespace(eth=eth, is_connected=AsyncMock(return_value=True))
    return Web3Ledger(None, TOKEN, poll_interval=0.01, w3=w3)


@pytest.mark.asyncio
async def test_memory_ledger_filters_by_kind_and_range(ledger, transfer, approval):
    """Past-event queries filter by kind and block range."""
    ledger.add_event(transfer(1))
    ledger.add_event(approval(2))
    ledger.add_event(transfer(5))

    transfers = await ledger.query_past_events(EventKind.TRANSFER, 0, 4)
    approvals = await ledger.query_past_events(EventKind.APPROVAL, 0, 10)

    assert [e.block_index for e in transfers] == [1]
    assert [e.block_index for e in approvals] == [2]


@pytest.mark.asyncio
async def test_memory_ledger_rejects_unmined_block(ledger):
    """Looking up a block past the head fails."""
    ledger.mine(3)
    assert (await ledger.get_block(3)).timestamp == ledger.genesis_timestamp + 36
    with pytest.raises(LedgerError):
        await ledger.get_block(4)


@pytest.mark.asyncio
async def test_memory_ledger_handler_failure_keeps_subscription(ledger, transfer):
    """A failing handler is logged and stays subscribed."""
    delivered = []

    async def handler(event):
        delivered.append(event.block_index)
        if event.block_index == 1:
            raise RuntimeError("boom")

    await ledger.subscribe(EventKind.TRANSFER, handler)
    await ledger.emit(transfer(1))
    await ledger.emit(transfer(2))

    assert delivered == [1, 2]
    assert ledger.handler_failures == 1
    assert ledger.is_subscribed(EventKind.TRANSFER)


@pytest.mark.asyncio
async def test_memory_ledger_allowance_tracks_latest_approval(ledger, approval):
    """Allowance is the latest approved value."""
    assert await ledger.allowance(ALICE, CAROL) == 0
    ledger.add_event(approval(1, value=10))
    ledger.add_event(approval(2, value=25))

    assert await ledger.allowance(ALICE.upper().replace("0X", "0x"), CAROL) == 25
    assert await ledger.allowance(BOB, CAROL) == 0


def test_decode_transfer_log():
    """Transfer log entries decode into transfer events."""
    event = decode_log(
        EventKind.TRANSFER,
        make_log(7, log_index=3, **{"from": ALICE, "to": BOB, "value": 99}),
    )

    assert isinstance(event, TransferEvent)
    assert event.from_address == ALICE
    assert event.to_address == BOB
    assert event.value == 99
    assert event.block_index == 7
    assert event.log_index == 3
    assert event.transaction_hash == "0x" + "01" * 32


def test_decode_approval_log():
    """Approval log entries decode into approval events."""
    event = decode_log(EventKind.APPROVAL, make_log(8, owner=ALICE, spender=CAROL, value=5))

    assert isinstance(event, ApprovalEvent)
    assert event.owner == ALICE
    assert event.spender == CAROL


@pytest.mark.asyncio
async def test_web3_query_past_events(web3_ledger, contract):
    """Past events are fetched through contract get_logs."""
    contract.events.Transfer.get_logs.return_value = [
        make_log(3, **{"from": ZERO_ADDRESS, "to": ALICE, "value": 1000}),
        make_log(9, **{"from": ALICE, "to": BOB, "value": 10}),
    ]

    events = await web3_ledger.query_past_events(EventKind.TRANSFER, 0, 20)

    assert [e.block_index for e in events] == [3, 9]
    contract.events.Transfer.get_logs.assert_awaited_once_with(from_block=0, to_block=20)


@pytest.mark.asyncio
async def test_web3_query_failure_raises_ledger_error(web3_ledger, contract):
    """Provider errors surface as LedgerError."""
    contract.events.Approval.get_logs.side_effect = ConnectionError("rpc down")

    with pytest.raises(LedgerError):
        await web3_ledger.query_past_events(EventKind.APPROVAL, 0, 20)


@pytest.mark.asyncio
async def test_web3_get_block_and_head(web3_ledger):
    """Block headers and the head come from the eth module."""
    header = await web3_ledger.get_block(20)

    assert header.timestamp == 1_700_000_240
    assert await web3_ledger.latest_block() == 20


@pytest.mark.asyncio
async def test_web3_get_block_failure(web3_ledger):
    """A failed block fetch surfaces as LedgerError."""
    with pytest.raises(LedgerError):
        await web3_ledger.get_block(99)


@pytest.mark.asyncio
async def test_web3_subscription_polls_from_cursor(web3_ledger, contract):
    """Subscriptions poll new ranges from the cursor."""
    received = asyncio.Queue()

    async def handler(event):
        await received.put(event)

    contract.events.Approval.get_logs.return_value = [
        make_log(21, owner=ALICE, spender=CAROL, value=1),
    ]
    web3_ledger._w3.eth.head = 21

    await web3_ledger.subscribe(EventKind.APPROVAL, handler, from_block=21)
    event = await asyncio.wait_for(received.get(), timeout=1.0)
    await web3_ledger.unsubscribe(EventKind.APPROVAL)

    assert event.block_index == 21
    first_call = contract.events.Approval.get_logs.await_args_list[0]
    assert first_call.kwargs == {"from_block": 21, "to_block": 21}


@pytest.mark.asyncio
async def test_web3_allowance(web3_ledger, contract):
    """Allowance calls the contract function."""
    contract.functions.allowance.return_value.call = AsyncMock(return_value=123)

    assert await web3_ledger.allowance(ALICE, CAROL) == 123


@pytest.mark.asyncio
async def test_web3_health_check(web3_ledger):
    """Health check reflects provider connectivity."""
    assert await web3_ledger.health_check() is True
    web3_ledger._w3.is_connected.side_effect = OSError("refused")
    assert await web3_ledger.health_check() is False


def test_create_ledger_falls_back_to_memory():
    """Incomplete web3 settings fall back to memory."""
    settings = Settings(LEDGER_ADAPTER="web3", RPC_URL=None, TOKEN_ADDRESS=None)
    assert isinstance(create_ledger(settings), InMemoryLedger)


def test_create_ledger_memory_by_default():
    """The memory adapter is the default."""
    assert isinstance(create_ledger(Settings(LEDGER_ADAPTER="memory")), InMemoryLedger)
