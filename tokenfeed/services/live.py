"""Live subscription merging into the feed."""
import asyncio
import structlog
from ..errors import BlockResolutionFailure
from ..event_models import EventKind, NormalizedEvent, RawEvent
from ..ledger.base import LedgerAdapter
from ..metrics import Metrics
from .feed_store import FeedStore
from .normalizer import normalize
from .timestamps import BlockTimestampResolver

log = structlog.get_logger()


class LiveSubscriptionMerger:
    """
    Merges live Transfer and Approval deliveries into the feed.

    Ledger handlers only enqueue raw events. Nothing is processed until
    start() is called with the block the backfill settled at; deliveries at
    or below that block are skipped as already covered. Each delivery then
    resolves independently, and a single consumer prepends resolved records
    to the feed in the order they finish.
    """

    KINDS = (EventKind.TRANSFER, EventKind.APPROVAL)

    def __init__(
        self,
        ledger: LedgerAdapter,
        resolver: BlockTimestampResolver,
        feed: FeedStore,
        metrics: Metrics | None = None,
        queue_size: int = 1000,
    ):
        self._ledger = ledger
        self._resolver = resolver
        self._feed = feed
        self._metrics = metrics
        self._inbox: asyncio.Queue[RawEvent] = asyncio.Queue(maxsize=queue_size)
        self._updates: asyncio.Queue[NormalizedEvent] = asyncio.Queue()
        self._pending: set[asyncio.Task] = set()
        self._dispatcher: asyncio.Task | None = None
        self._consumer: asyncio.Task | None = None
        self._subscribed: list[EventKind] = []
        self._settled_block: int | None = None
        self._closed = False

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and not self._closed

    @property
    def buffered(self) -> int:
        return self._inbox.qsize()

    async def subscribe(self, from_block: int | None = None):
        """Register both standing subscriptions. Arrivals buffer until start()."""
        for kind in self.KINDS:
            if self._closed:
                log.info("live.subscribe_skipped", reason="closed")
                return
            await self._ledger.subscribe(kind, self._on_event, from_block=from_block)
            if self._closed:
                # close() ran while the ledger was registering this one
                await self._ledger.unsubscribe(kind)
                return
            self._subscribed.append(kind)
        log.info("live.subscribed", kinds=[k.value for k in self.KINDS], from_block=from_block)

    def start(self, settled_block: int):
        """Begin applying deliveries newer than settled_block."""
        if self._closed:
            raise RuntimeError("merger already closed")
        if self._dispatcher is not None:
            raise RuntimeError("merger already started")
        self._settled_block = settled_block
        self._consumer = asyncio.create_task(self._consume(), name="tokenfeed-live-consumer")
        self._dispatcher = asyncio.create_task(self._dispatch(), name="tokenfeed-live-dispatcher")
        log.info("live.started", settled_block=settled_block, buffered=self._inbox.qsize())

    async def _on_event(self, event: RawEvent):
        if self._closed:
            return
        try:
            self._inbox.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped("inbox_full", event.block_index)

    async def _dispatch(self):
        while True:
            event = await self._inbox.get()
            try:
                if self._settled_block is not None and event.block_index <= self._settled_block:
                    log.debug("live.covered_by_backfill", block_index=event.block_index)
                    continue
                task = asyncio.create_task(self._process(event))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
            finally:
                self._inbox.task_done()

    async def _process(self, event: RawEvent):
        try:
            record = normalize(event)
            if record is None:
                if self._metrics is not None:
                    self._metrics.mints_filtered_total.inc()
                return
            timestamp = await self._resolver.resolve(record.block_index)
        except BlockResolutionFailure as e:
            self._dropped("block_resolution", event.block_index, error=str(e))
            return
        except Exception as e:
            self._dropped("handler_error", event.block_index, error=str(e), error_type=type(e).__name__)
            return

        await self._updates.put(record.with_timestamp(timestamp))

    async def _consume(self):
        while True:
            record = await self._updates.get()
            try:
                if self._feed.append(record):
                    if self._metrics is not None:
                        self._metrics.record_appended(record.kind.value, "live")
                    log.info(
                        "live.record_appended",
                        kind=record.kind.value,
                        block_index=record.block_index,
                    )
            finally:
                self._updates.task_done()

    async def drain(self):
        """Wait until every delivery received so far has reached the feed or been dropped."""
        if self._dispatcher is None:
            raise RuntimeError("merger not started")
        while True:
            await self._inbox.join()
            if self._pending:
                await asyncio.gather(*list(self._pending), return_exceptions=True)
                continue
            await self._updates.join()
            if self._inbox.empty() and not self._pending and self._updates.empty():
                return

    async def close(self):
        """Cancel both subscriptions and stop all in-flight processing."""
        if self._closed:
            return
        self._closed = True

        for kind in self._subscribed:
            await self._ledger.unsubscribe(kind)
        self._subscribed.clear()

        tasks = [t for t in (self._dispatcher, self._consumer) if t is not None]
        tasks.extend(self._pending)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
        log.info("live.closed", abandoned=self._inbox.qsize() + self._updates.qsize())

    def _dropped(self, reason: str, block_index: int, **extra):
        if self._metrics is not None:
            self._metrics.live_events_dropped_total.labels(reason=reason).inc()
        log.warning("live.event_dropped", reason=reason, block_index=block_index, **extra)
