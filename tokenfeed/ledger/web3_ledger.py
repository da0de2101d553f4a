"""web3.py ledger adapter for an ERC-20 token contract."""
import asyncio
from typing import Any
import structlog
from web3 import AsyncWeb3, AsyncHTTPProvider
from .base import EventHandler, LedgerAdapter
from ..errors import LedgerError, SubscriptionFailure
from ..event_models import ApprovalEvent, BlockHeader, EventKind, RawEvent, TransferEvent

log = structlog.get_logger()

ERC20_ABI = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "from", "type": "address"},
            {"indexed": True, "name": "to", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
        "name": "Transfer",
        "type": "event",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "owner", "type": "address"},
            {"indexed": True, "name": "spender", "type": "address"},
            {"indexed": False, "name": "value", "type": "uint256"},
        ],
        "name": "Approval",
        "type": "event",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def decode_log(kind: EventKind, entry: Any) -> RawEvent:
    """Convert a decoded web3 event log into a raw event."""
    args = entry["args"]
    tx_hash = entry.get("transactionHash")
    common = {
        "value": int(args["value"]),
        "block_index": int(entry["blockNumber"]),
        "log_index": entry.get("logIndex"),
        "transaction_hash": AsyncWeb3.to_hex(tx_hash) if tx_hash is not None else None,
    }
    if kind is EventKind.TRANSFER:
        return TransferEvent(from_address=args["from"], to_address=args["to"], **common)
    return ApprovalEvent(owner=args["owner"], spender=args["spender"], **common)


class Web3Ledger(LedgerAdapter):
    """
    Ledger adapter backed by an AsyncWeb3 HTTP provider.

    Live subscriptions poll get_logs from a per-kind cursor, since plain
    HTTP providers cannot push.
    """

    def __init__(
        self,
        rpc_url: str | None,
        token_address: str,
        poll_interval: float = 2.0,
        w3: AsyncWeb3 | None = None,
    ):
        """
        Initialize the web3 ledger.

        Args:
            rpc_url: JSON-RPC endpoint (ignored when w3 is given)
            token_address: ERC-20 contract address
            poll_interval: Seconds between live polls
            w3: Preconfigured AsyncWeb3 instance
        """
        if w3 is None:
            if not rpc_url:
                raise ValueError("rpc_url is required when no AsyncWeb3 instance is given")
            w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": 10}))
        self._w3 = w3
        self.token_address = AsyncWeb3.to_checksum_address(token_address)
        self._contract = self._w3.eth.contract(address=self.token_address, abi=ERC20_ABI)
        self.poll_interval = poll_interval
        self._pollers: dict[EventKind, asyncio.Task] = {}

    async def query_past_events(self, kind: EventKind, from_block: int, to_block: int) -> list[RawEvent]:
        """
        Fetch logs for one event kind.

        Raises:
            LedgerError: If the provider call fails
        """
        event = getattr(self._contract.events, kind.value)
        try:
            entries = await event.get_logs(from_block=from_block, to_block=to_block)
        except Exception as e:
            log.error(
                "web3.get_logs_failed",
                kind=kind.value,
                from_block=from_block,
                to_block=to_block,
                error=str(e),
            )
            raise LedgerError(f"get_logs for {kind.value} failed: {e}") from e
        return [decode_log(kind, entry) for entry in entries]

    async def get_block(self, block_index: int) -> BlockHeader:
        try:
            block = await self._w3.eth.get_block(block_index)
        except Exception as e:
            log.warning("web3.get_block_failed", block_index=block_index, error=str(e))
            raise LedgerError(f"get_block({block_index}) failed: {e}") from e
        return BlockHeader(block_index=block_index, timestamp=int(block["timestamp"]))

    async def latest_block(self) -> int:
        try:
            return int(await self._w3.eth.block_number)
        except Exception as e:
            log.warning("web3.block_number_failed", error=str(e))
            raise LedgerError(f"block_number failed: {e}") from e

    async def subscribe(self, kind: EventKind, handler: EventHandler, from_block: int | None = None) -> None:
        await self.unsubscribe(kind)
        cursor = from_block if from_block is not None else await self.latest_block() + 1
        self._pollers[kind] = asyncio.create_task(
            self._poll(kind, handler, cursor), name=f"tokenfeed-poll-{kind.value}"
        )
        log.info("subscription.registered", kind=kind.value, from_block=cursor, adapter="web3")

    async def unsubscribe(self, kind: EventKind) -> None:
        task = self._pollers.pop(kind, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("subscription.cancelled", kind=kind.value, adapter="web3")

    async def _poll(self, kind: EventKind, handler: EventHandler, cursor: int):
        """Deliver every new log of one kind, advancing the cursor past each polled range."""
        while True:
            try:
                head = await self.latest_block()
                if head >= cursor:
                    for event in await self.query_past_events(kind, cursor, head):
                        await self._deliver(kind, handler, event)
                    cursor = head + 1
            except LedgerError as e:
                # Cursor unchanged; the same range is retried next round
                log.warning("subscription.poll_failed", kind=kind.value, cursor=cursor, error=str(e))
            await asyncio.sleep(self.poll_interval)

    async def _deliver(self, kind: EventKind, handler: EventHandler, event: RawEvent):
        try:
            await handler(event)
        except Exception as e:
            failure = SubscriptionFailure(kind, e)
            log.error("subscription.handler_failed", kind=kind.value, error=str(failure), adapter="web3")

    async def allowance(self, owner: str, spender: str) -> int:
        try:
            return int(
                await self._contract.functions.allowance(
                    AsyncWeb3.to_checksum_address(owner),
                    AsyncWeb3.to_checksum_address(spender),
                ).call()
            )
        except Exception as e:
            log.warning("web3.allowance_failed", owner=owner, spender=spender, error=str(e))
            raise LedgerError(f"allowance call failed: {e}") from e

    async def health_check(self) -> bool:
        try:
            return bool(await self._w3.is_connected())
        except Exception as e:
            log.warning("web3.health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        for kind in list(self._pollers):
            await self.unsubscribe(kind)
