"""Error kinds raised by the ledger adapters and the feed pipeline."""
from .event_models import EventKind


class TokenFeedError(Exception):
    """Base exception for feed errors"""
    pass


class LedgerError(TokenFeedError):
    """Raised by ledger adapters when the provider call fails"""
    pass


class QueryFailure(TokenFeedError):
    """Historical query failed; the whole backfill is aborted"""

    def __init__(self, kind: EventKind | None, from_block: int, to_block: int | None, cause: Exception):
        self.kind = kind
        self.from_block = from_block
        self.to_block = to_block
        self.cause = cause
        target = kind.value if kind is not None else "latest block"
        super().__init__(f"{target} query failed for blocks {from_block}..{to_block}: {cause}")


class BlockResolutionFailure(TokenFeedError):
    """Single block lookup failed; only events in that block are dropped"""

    def __init__(self, block_index: int, cause: Exception):
        self.block_index = block_index
        self.cause = cause
        super().__init__(f"could not resolve block {block_index}: {cause}")


class SubscriptionFailure(TokenFeedError):
    """A live handler raised while processing a delivery"""

    def __init__(self, kind: EventKind, cause: Exception):
        self.kind = kind
        self.cause = cause
        super().__init__(f"{kind.value} handler failed: {cause}")
