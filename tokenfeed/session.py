"""Feed session: owns the feed, the timestamp cache and the live subscriptions."""
from enum import Enum
from typing import Any
import structlog
from .config import Settings, get_settings
from .errors import LedgerError, QueryFailure
from .ledger.base import LedgerAdapter
from .metrics import Metrics
from .services.backfill import HistoryBackfillScanner
from .services.feed_store import FeedStore
from .services.live import LiveSubscriptionMerger
from .services.timestamps import BlockTimestampResolver

log = structlog.get_logger()


class SessionState(str, Enum):
    IDLE = "idle"
    BACKFILLING = "backfilling"
    LIVE = "live"
    FAILED = "failed"
    CLOSED = "closed"


class FeedSession:
    """
    One watch session over a token's activity.

    start() subscribes first so nothing is missed, backfills up to the head
    it observed, installs the batch and only then lets live deliveries
    through. close() tears everything down; late results are discarded.
    """

    def __init__(
        self,
        ledger: LedgerAdapter,
        settings: Settings | None = None,
        metrics: Metrics | None = None,
    ):
        self.settings = settings or get_settings()
        self.ledger = ledger
        self.metrics = metrics or Metrics()
        self.feed = FeedStore(metrics=self.metrics, listener_queue_size=self.settings.LIVE_QUEUE_SIZE)
        self.resolver = BlockTimestampResolver(
            ledger,
            fmt=self.settings.TIMESTAMP_FORMAT,
            tz=self.settings.TIMESTAMP_TZ,
            metrics=self.metrics,
        )
        self.scanner = HistoryBackfillScanner(ledger, self.resolver, metrics=self.metrics)
        self.merger = LiveSubscriptionMerger(
            ledger,
            self.resolver,
            self.feed,
            metrics=self.metrics,
            queue_size=self.settings.LIVE_QUEUE_SIZE,
        )
        self.state = SessionState.IDLE
        self.error: str | None = None
        self.settled_block: int | None = None

    async def start(self, from_block: int | None = None):
        """
        Backfill, then go live.

        Raises:
            QueryFailure: If the historical scan cannot complete
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"session cannot start from state {self.state.value}")
        if from_block is None:
            from_block = self.settings.BACKFILL_FROM_BLOCK

        self.state = SessionState.BACKFILLING
        log.info("session.starting", from_block=from_block)

        try:
            try:
                settled_block = await self.ledger.latest_block()
            except LedgerError as e:
                raise QueryFailure(None, from_block, None, e) from e

            if self.state is SessionState.CLOSED:
                return
            await self.merger.subscribe(from_block=settled_block + 1)
            if self.state is SessionState.CLOSED:
                return
            records = await self.scanner.scan(from_block, settled_block)
        except QueryFailure as e:
            await self._fail(e)
            raise

        if self.state is SessionState.CLOSED:
            return

        self.feed.replace_all(records)
        self.settled_block = settled_block
        self.merger.start(settled_block)
        self.state = SessionState.LIVE
        log.info("session.live", settled_block=settled_block, records=len(records))

    async def _fail(self, error: QueryFailure):
        self.error = str(error)
        log.error("session.backfill_failed", error=self.error)
        await self.merger.close()
        if self.state is not SessionState.CLOSED:
            self.state = SessionState.FAILED

    async def close(self):
        """Cancel live subscriptions and stop accepting records."""
        if self.state is SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        await self.merger.close()
        self.feed.close()
        log.info("session.closed")

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "error": self.error,
            "settled_block": self.settled_block,
            "records": len(self.feed),
        }

    async def __aenter__(self) -> "FeedSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
