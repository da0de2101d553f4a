"""One-shot historical scan of token activity."""
import asyncio
import time
import structlog
from ..errors import LedgerError, QueryFailure
from ..event_models import EventKind, NormalizedEvent, RawEvent
from ..ledger.base import LedgerAdapter
from ..metrics import Metrics
from .normalizer import normalize_batch
from .timestamps import BlockTimestampResolver

log = structlog.get_logger()


class HistoryBackfillScanner:
    """
    Scans a block range for Transfer and Approval events.

    The output is resolved and sorted by block descending. A failed event
    query aborts the scan; a failed block lookup only drops the events in
    that block.
    """

    def __init__(
        self,
        ledger: LedgerAdapter,
        resolver: BlockTimestampResolver,
        metrics: Metrics | None = None,
    ):
        self._ledger = ledger
        self._resolver = resolver
        self._metrics = metrics

    async def scan(self, from_block: int = 0, to_block: int | None = None) -> list[NormalizedEvent]:
        """
        Backfill the inclusive range [from_block, to_block].

        Args:
            from_block: First block to scan
            to_block: Last block to scan (ledger head when None)

        Returns:
            Resolved records, newest block first

        Raises:
            QueryFailure: If the head or either event query fails
        """
        start_time = time.time()

        if to_block is None:
            try:
                to_block = await self._ledger.latest_block()
            except LedgerError as e:
                raise QueryFailure(None, from_block, None, e) from e

        results = await asyncio.gather(
            self._query(EventKind.TRANSFER, from_block, to_block),
            self._query(EventKind.APPROVAL, from_block, to_block),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        transfers, approvals = results

        normalized = normalize_batch([*transfers, *approvals], metrics=self._metrics)
        resolved, failed = await self._resolver.resolve_many(r.block_index for r in normalized)

        records = [
            record.with_timestamp(resolved[record.block_index])
            for record in normalized
            if record.block_index in resolved
        ]
        # list.sort is stable, reverse included
        records.sort(key=lambda r: r.block_index, reverse=True)

        dropped = len(normalized) - len(records)
        duration = time.time() - start_time
        if self._metrics is not None:
            self._metrics.backfill_duration.observe(duration)
            for record in records:
                self._metrics.record_appended(record.kind.value, "backfill")

        log.info(
            "backfill.completed",
            from_block=from_block,
            to_block=to_block,
            transfers=len(transfers),
            approvals=len(approvals),
            records=len(records),
            dropped=dropped,
            failed_blocks=sorted(failed),
            duration_ms=round(duration * 1000, 2),
        )
        return records

    async def _query(self, kind: EventKind, from_block: int, to_block: int) -> list[RawEvent]:
        try:
            return await self._ledger.query_past_events(kind, from_block, to_block)
        except LedgerError as e:
            log.error(
                "backfill.query_failed",
                kind=kind.value,
                from_block=from_block,
                to_block=to_block,
                error=str(e),
            )
            raise QueryFailure(kind, from_block, to_block, e) from e
