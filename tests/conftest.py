"""Shared fixtures: an in-memory ledger and raw event factories."""
import asyncio
import pytest
from tokenfeed.config import Settings
from tokenfeed.event_models import ZERO_ADDRESS, ApprovalEvent, TransferEvent
from tokenfeed.ledger.memory import InMemoryLedger

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20


class GatedLedger(InMemoryLedger):
    """In-memory ledger whose block lookups wait until the gate opens."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gate = asyncio.Event()

    async def get_block(self, block_index):
        await self.gate.wait()
        return await super().get_block(block_index)


@pytest.fixture
def ledger():
    return InMemoryLedger(genesis_timestamp=1_700_000_000, block_time=12)


@pytest.fixture
def settings():
    return Settings(
        LEDGER_ADAPTER="memory",
        TIMESTAMP_FORMAT="%Y-%m-%d %H:%M:%S",
        TIMESTAMP_TZ="UTC",
        TOKEN_DECIMALS=18,
        BACKFILL_FROM_BLOCK=0,
    )


@pytest.fixture
def transfer():
    def make(block_index, value=10**18, sender=ALICE, recipient=BOB, log_index=0):
        return TransferEvent(
            from_address=sender,
            to_address=recipient,
            value=value,
            block_index=block_index,
            log_index=log_index,
        )
    return make


@pytest.fixture
def mint(transfer):
    def make(block_index, value=1000 * 10**18, recipient=ALICE):
        return transfer(block_index, value=value, sender=ZERO_ADDRESS, recipient=recipient)
    return make


@pytest.fixture
def approval():
    def make(block_index, value=5 * 10**17, owner=ALICE, spender=CAROL, log_index=0):
        return ApprovalEvent(
            owner=owner,
            spender=spender,
            value=value,
            block_index=block_index,
            log_index=log_index,
        )
    return make
