"""
Ledger adapters for reading token activity.

- InMemoryLedger: deterministic in-process ledger
- Web3Ledger: ERC-20 contract over a JSON-RPC endpoint
"""
import structlog

from .base import EventHandler, LedgerAdapter
from .memory import InMemoryLedger
from .web3_ledger import Web3Ledger
from ..config import Settings

log = structlog.get_logger()


def create_ledger(settings: Settings) -> LedgerAdapter:
    """
    Create the ledger adapter named by LEDGER_ADAPTER.

    Falls back to the in-memory ledger when web3 is requested without an
    RPC endpoint or token address.
    """
    if settings.LEDGER_ADAPTER == "web3":
        if not settings.RPC_URL or not settings.TOKEN_ADDRESS:
            log.warning(
                "ledger.fallback",
                requested="web3",
                actual="memory",
                reason="RPC_URL or TOKEN_ADDRESS not configured",
            )
            return InMemoryLedger()

        log.info("ledger.selected", type="web3", token=settings.TOKEN_ADDRESS)
        return Web3Ledger(
            str(settings.RPC_URL),
            settings.TOKEN_ADDRESS,
            poll_interval=settings.POLL_INTERVAL_SECONDS,
        )

    log.info("ledger.selected", type="memory")
    return InMemoryLedger()


__all__ = [
    "EventHandler",
    "LedgerAdapter",
    "InMemoryLedger",
    "Web3Ledger",
    "create_ledger",
]
