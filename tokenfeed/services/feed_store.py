"""The ordered feed both the backfill and live paths write into."""
import asyncio
from typing import Iterable
import structlog
from ..event_models import NormalizedEvent
from ..metrics import Metrics

log = structlog.get_logger()


class FeedStore:
    """
    Ordered sequence of resolved records, most recent first.

    Readers get immutable snapshots. Listeners get a queue that receives each
    appended record. Appends after close() are rejected as no-ops.
    """

    def __init__(self, metrics: Metrics | None = None, listener_queue_size: int = 1000):
        self._records: list[NormalizedEvent] = []
        # queue -> drop oldest on overflow instead of detaching
        self._listeners: dict[asyncio.Queue, bool] = {}
        self._listener_queue_size = listener_queue_size
        self._metrics = metrics
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def head(self) -> NormalizedEvent | None:
        return self._records[0] if self._records else None

    def __len__(self) -> int:
        return len(self._records)

    def replace_all(self, records: Iterable[NormalizedEvent]):
        """Install the backfilled batch. Records must already be sorted."""
        if self._closed:
            log.warning("feed.replace_rejected", reason="closed")
            return
        batch = list(records)
        for record in batch:
            _require_resolved(record)
        self._records = batch
        self._set_size()
        log.info("feed.replaced", count=len(batch))

    def append(self, record: NormalizedEvent) -> bool:
        """
        Prepend a live record.

        Returns:
            True if the record was added, False if the feed is closed
        """
        if self._closed:
            log.info("feed.append_rejected", reason="closed", block_index=record.block_index)
            return False
        _require_resolved(record)

        head = self.head
        if head is not None and record.block_index < head.block_index:
            log.warning(
                "feed.out_of_order",
                block_index=record.block_index,
                head_block_index=head.block_index,
            )

        self._records.insert(0, record)
        self._set_size()
        self._notify(record)
        return True

    def snapshot(self) -> tuple[NormalizedEvent, ...]:
        return tuple(self._records)

    def listen(self, drop_oldest: bool = False) -> asyncio.Queue:
        """
        Register a listener queue for appended records.

        Args:
            drop_oldest: On overflow discard the oldest queued record and keep
                the listener attached. By default a full listener is detached.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._listener_queue_size)
        self._listeners[queue] = drop_oldest
        return queue

    def unlisten(self, queue: asyncio.Queue):
        self._listeners.pop(queue, None)

    def is_listening(self, queue: asyncio.Queue) -> bool:
        return queue in self._listeners

    def close(self):
        self._closed = True
        self._listeners.clear()
        log.info("feed.closed", count=len(self._records))

    def _notify(self, record: NormalizedEvent):
        stalled = []
        for queue, drop_oldest in self._listeners.items():
            try:
                queue.put_nowait(record)
            except asyncio.QueueFull:
                if not drop_oldest:
                    stalled.append(queue)
                    continue
                skipped = queue.get_nowait()
                queue.put_nowait(record)
                log.warning("feed.listener_overflow", skipped_block_index=skipped.block_index)
        for queue in stalled:
            log.warning("feed.listener_detached", reason="queue_full")
            self._listeners.pop(queue, None)

    def _set_size(self):
        if self._metrics is not None:
            self._metrics.feed_size.set(len(self._records))


def _require_resolved(record: NormalizedEvent):
    if not record.is_resolved:
        raise ValueError(f"record for block {record.block_index} has no timestamp")
