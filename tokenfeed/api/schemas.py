from pydantic import BaseModel
from typing import List
from ..event_models import EventKind, NormalizedEvent


def format_units(amount: int, decimals: int) -> str:
    """Scale a smallest-unit integer for display, e.g. 1500000000000000000 -> '1.5'."""
    whole, frac = divmod(amount, 10 ** decimals)
    frac_digits = str(frac).rjust(decimals, "0").rstrip("0") or "0"
    return f"{whole}.{frac_digits}"


class FeedRecordView(BaseModel):
    kind: EventKind
    party_a: str
    party_b: str
    amount: str
    amount_display: str
    block_index: int
    timestamp: str
    transaction_hash: str | None = None

    @classmethod
    def from_record(cls, record: NormalizedEvent, decimals: int) -> "FeedRecordView":
        return cls(
            kind=record.kind,
            party_a=record.party_a,
            party_b=record.party_b,
            amount=str(record.amount),
            amount_display=format_units(record.amount, decimals),
            block_index=record.block_index,
            timestamp=record.timestamp,
            transaction_hash=record.transaction_hash,
        )

class FeedStatusResponse(BaseModel):
    state: str
    error: str | None = None
    settled_block: int | None = None
    records: int

class FeedResponse(BaseModel):
    status: FeedStatusResponse
    total: int
    records: List[FeedRecordView]

class AllowanceResponse(BaseModel):
    owner: str
    spender: str
    amount: str
    amount_display: str
