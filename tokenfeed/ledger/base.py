"""Base interface for ledger backends."""
from abc import ABC, abstractmethod
from typing import Awaitable, Callable
from ..event_models import BlockHeader, EventKind, RawEvent

EventHandler = Callable[[RawEvent], Awaitable[None]]


class LedgerAdapter(ABC):
    """
    Abstract interface for reading token activity from a ledger.

    Implementations raise LedgerError for provider failures.
    """

    @abstractmethod
    async def query_past_events(self, kind: EventKind, from_block: int, to_block: int) -> list[RawEvent]:
        """
        Fetch every event of one kind in an inclusive block range.

        Args:
            kind: Event kind to query
            from_block: First block of the range
            to_block: Last block of the range

        Returns:
            Raw events in ledger order
        """
        pass

    @abstractmethod
    async def get_block(self, block_index: int) -> BlockHeader:
        """
        Fetch a block header.

        Args:
            block_index: Block number

        Returns:
            Header carrying the block's unix timestamp
        """
        pass

    @abstractmethod
    async def latest_block(self) -> int:
        """Return the current head block number."""
        pass

    @abstractmethod
    async def subscribe(self, kind: EventKind, handler: EventHandler, from_block: int | None = None) -> None:
        """
        Register a standing handler for new events of one kind.

        Args:
            kind: Event kind to watch
            handler: Coroutine called once per delivered event
            from_block: First block to deliver from (adapter head when None)
        """
        pass

    @abstractmethod
    async def unsubscribe(self, kind: EventKind) -> None:
        """Cancel the standing handler for one kind."""
        pass

    @abstractmethod
    async def allowance(self, owner: str, spender: str) -> int:
        """Return the amount spender may still move on behalf of owner."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the ledger backend is reachable.

        Returns:
            True if backend is healthy, False otherwise
        """
        pass

    async def close(self) -> None:
        """Release provider resources."""
        pass
