"""Block timestamp resolution with per-block lookup deduplication."""
import asyncio
from datetime import datetime
from typing import Iterable
from zoneinfo import ZoneInfo
import structlog
from ..errors import BlockResolutionFailure, LedgerError
from ..ledger.base import LedgerAdapter
from ..metrics import Metrics

log = structlog.get_logger()


class BlockTimestampResolver:
    """
    Resolves block numbers to display timestamps.

    Resolved values are cached for the lifetime of the resolver. Concurrent
    requests for a block that is not cached yet share one ledger lookup.
    Failed lookups are not cached.
    """

    def __init__(
        self,
        ledger: LedgerAdapter,
        fmt: str = "%Y-%m-%d %H:%M:%S",
        tz: str = "UTC",
        metrics: Metrics | None = None,
    ):
        """
        Initialize the resolver.

        Args:
            ledger: Source of block headers
            fmt: strftime format for the rendered timestamp
            tz: IANA zone the timestamp is rendered in
            metrics: Optional metrics sink
        """
        self._ledger = ledger
        self._fmt = fmt
        self._tz = ZoneInfo(tz)
        self._metrics = metrics
        self._cache: dict[int, str] = {}
        self._inflight: dict[int, asyncio.Future] = {}

    def cached(self, block_index: int) -> str | None:
        return self._cache.get(block_index)

    def format_timestamp(self, unix_seconds: int) -> str:
        return datetime.fromtimestamp(unix_seconds, tz=self._tz).strftime(self._fmt)

    async def resolve(self, block_index: int) -> str:
        """
        Resolve one block's timestamp.

        Raises:
            BlockResolutionFailure: If the ledger lookup fails
        """
        if block_index in self._cache:
            return self._cache[block_index]

        lookup = self._inflight.get(block_index)
        if lookup is None:
            lookup = asyncio.ensure_future(self._lookup(block_index))
            self._inflight[block_index] = lookup
            lookup.add_done_callback(lambda fut, b=block_index: self._forget(b, fut))

        # A cancelled waiter must not cancel the lookup other waiters share
        return await asyncio.shield(lookup)

    async def resolve_many(
        self, block_indices: Iterable[int]
    ) -> tuple[dict[int, str], dict[int, BlockResolutionFailure]]:
        """
        Resolve distinct blocks concurrently and wait for all of them.

        Returns:
            (resolved, failed) keyed by block number
        """
        blocks = list(dict.fromkeys(block_indices))
        results = await asyncio.gather(
            *(self.resolve(b) for b in blocks), return_exceptions=True
        )

        resolved: dict[int, str] = {}
        failed: dict[int, BlockResolutionFailure] = {}
        for block_index, result in zip(blocks, results):
            if isinstance(result, BlockResolutionFailure):
                failed[block_index] = result
            elif isinstance(result, BaseException):
                raise result
            else:
                resolved[block_index] = result
        return resolved, failed

    async def _lookup(self, block_index: int) -> str:
        if self._metrics is not None:
            self._metrics.block_lookups_total.inc()
        try:
            header = await self._ledger.get_block(block_index)
        except LedgerError as e:
            if self._metrics is not None:
                self._metrics.block_resolution_failures_total.inc()
            log.warning("timestamp.resolution_failed", block_index=block_index, error=str(e))
            raise BlockResolutionFailure(block_index, e) from e

        timestamp = self.format_timestamp(header.timestamp)
        self._cache[block_index] = timestamp
        log.debug("timestamp.resolved", block_index=block_index, timestamp=timestamp)
        return timestamp

    def _forget(self, block_index: int, fut: asyncio.Future):
        self._inflight.pop(block_index, None)
        # Mark the outcome retrieved even when every waiter went away
        if not fut.cancelled():
            fut.exception()
