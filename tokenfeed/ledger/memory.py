"""In-memory ledger adapter."""
import asyncio
import structlog
from .base import EventHandler, LedgerAdapter
from ..errors import LedgerError, SubscriptionFailure
from ..event_models import ApprovalEvent, BlockHeader, EventKind, RawEvent

log = structlog.get_logger()


class InMemoryLedger(LedgerAdapter):
    """
    In-process ledger holding a single token's events.

    Block timestamps are derived from genesis_timestamp and block_time unless
    set explicitly. Failures can be injected per block or for queries.
    """

    def __init__(self, genesis_timestamp: int = 1_700_000_000, block_time: int = 12):
        self.genesis_timestamp = genesis_timestamp
        self.block_time = block_time
        self._events: list[RawEvent] = []
        self._timestamps: dict[int, int] = {}
        self._head = 0
        self._handlers: dict[EventKind, EventHandler] = {}
        self.fail_blocks: set[int] = set()
        self.fail_queries = False
        self.block_lookups = 0
        self.handler_failures = 0

    def set_block_timestamp(self, block_index: int, timestamp: int):
        self._timestamps[block_index] = timestamp
        self._head = max(self._head, block_index)

    def mine(self, block_index: int):
        """Advance the head without adding events."""
        self._head = max(self._head, block_index)

    def add_event(self, event: RawEvent):
        """Record a historical event without delivering it to subscribers."""
        self._events.append(event)
        self._head = max(self._head, event.block_index)

    async def emit(self, event: RawEvent):
        """Record an event and deliver it to the subscriber for its kind."""
        self.add_event(event)
        handler = self._handlers.get(event.kind)
        if handler is None:
            return
        try:
            await handler(event)
        except Exception as e:
            self.handler_failures += 1
            failure = SubscriptionFailure(event.kind, e)
            log.error("subscription.handler_failed", kind=event.kind.value, error=str(failure), adapter="memory")

    async def query_past_events(self, kind: EventKind, from_block: int, to_block: int) -> list[RawEvent]:
        await asyncio.sleep(0)
        if self.fail_queries:
            raise LedgerError(f"{kind.value} query rejected by provider")
        return [
            e for e in self._events
            if e.kind == kind and from_block <= e.block_index <= to_block
        ]

    async def get_block(self, block_index: int) -> BlockHeader:
        self.block_lookups += 1
        # Yield so concurrent lookups genuinely overlap
        await asyncio.sleep(0)
        if block_index in self.fail_blocks:
            raise LedgerError(f"block {block_index} lookup failed")
        if block_index > self._head:
            raise LedgerError(f"block {block_index} not mined yet (head={self._head})")
        timestamp = self._timestamps.get(
            block_index, self.genesis_timestamp + block_index * self.block_time
        )
        return BlockHeader(block_index=block_index, timestamp=timestamp)

    async def latest_block(self) -> int:
        if self.fail_queries:
            raise LedgerError("block number query rejected by provider")
        return self._head

    async def subscribe(self, kind: EventKind, handler: EventHandler, from_block: int | None = None) -> None:
        self._handlers[kind] = handler
        log.info("subscription.registered", kind=kind.value, from_block=from_block, adapter="memory")

    async def unsubscribe(self, kind: EventKind) -> None:
        if self._handlers.pop(kind, None) is not None:
            log.info("subscription.cancelled", kind=kind.value, adapter="memory")

    def is_subscribed(self, kind: EventKind) -> bool:
        return kind in self._handlers

    async def allowance(self, owner: str, spender: str) -> int:
        """Latest approved value for the pair; 0 when never approved."""
        owner, spender = owner.lower(), spender.lower()
        for event in reversed(self._events):
            if (
                isinstance(event, ApprovalEvent)
                and event.owner.lower() == owner
                and event.spender.lower() == spender
            ):
                return event.value
        return 0

    async def health_check(self) -> bool:
        """In-memory ledger is always healthy."""
        return True
