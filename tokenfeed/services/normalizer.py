"""Map raw ledger events onto the feed record."""
from typing import Iterable
import structlog
from ..event_models import ZERO_ADDRESS, ApprovalEvent, NormalizedEvent, RawEvent, TransferEvent
from ..metrics import Metrics

log = structlog.get_logger()


def is_mint(event: RawEvent) -> bool:
    """A Transfer out of the zero address creates supply rather than moving it."""
    return isinstance(event, TransferEvent) and event.from_address.lower() == ZERO_ADDRESS


def normalize(event: RawEvent) -> NormalizedEvent | None:
    """
    Convert one raw event into an unresolved feed record.

    Returns None for mints. Approvals are never filtered. The amount stays in
    the token's smallest unit.
    """
    if is_mint(event):
        return None

    if isinstance(event, TransferEvent):
        party_a, party_b = event.from_address, event.to_address
    elif isinstance(event, ApprovalEvent):
        party_a, party_b = event.owner, event.spender
    else:
        raise TypeError(f"unsupported event type: {type(event).__name__}")

    return NormalizedEvent(
        kind=event.kind,
        party_a=party_a,
        party_b=party_b,
        amount=event.value,
        block_index=event.block_index,
        log_index=event.log_index,
        transaction_hash=event.transaction_hash,
    )


def normalize_batch(events: Iterable[RawEvent], metrics: Metrics | None = None) -> list[NormalizedEvent]:
    """Normalize a batch in input order, dropping mints."""
    records = []
    mints = 0
    for event in events:
        record = normalize(event)
        if record is None:
            mints += 1
            continue
        records.append(record)

    if mints:
        log.debug("normalizer.mints_filtered", count=mints)
        if metrics is not None:
            metrics.mints_filtered_total.inc(mints)
    return records
