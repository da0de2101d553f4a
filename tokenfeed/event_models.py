"""Token activity models: raw ledger events and the normalized feed record."""
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class EventKind(str, Enum):
    """Event kinds emitted by the token contract."""
    TRANSFER = "Transfer"
    APPROVAL = "Approval"


class _RawEventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: int = Field(..., ge=0, description="Amount in the token's smallest unit")
    block_index: int = Field(..., ge=0)
    log_index: int | None = None
    transaction_hash: str | None = None


class TransferEvent(_RawEventBase):
    kind: Literal[EventKind.TRANSFER] = EventKind.TRANSFER
    from_address: str
    to_address: str


class ApprovalEvent(_RawEventBase):
    kind: Literal[EventKind.APPROVAL] = EventKind.APPROVAL
    owner: str
    spender: str


RawEvent = Union[TransferEvent, ApprovalEvent]


class BlockHeader(BaseModel):
    """The part of a block the feed cares about."""
    model_config = ConfigDict(frozen=True)

    block_index: int
    timestamp: int = Field(..., description="Unix seconds")


class NormalizedEvent(BaseModel):
    """
    Canonical feed record.

    party_b is the recipient for a Transfer and the spender for an Approval.
    The timestamp stays None until the block has been resolved; the feed
    never exposes a record without one.
    """
    model_config = ConfigDict(frozen=True)

    kind: EventKind
    party_a: str
    party_b: str
    amount: int = Field(..., ge=0)
    block_index: int
    timestamp: str | None = None
    log_index: int | None = None
    transaction_hash: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.timestamp is not None

    def with_timestamp(self, timestamp: str) -> "NormalizedEvent":
        """Return the resolved copy of this record."""
        if self.timestamp is not None:
            raise ValueError(f"timestamp already attached to block {self.block_index} record")
        return self.model_copy(update={"timestamp": timestamp})
