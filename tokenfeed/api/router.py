from fastapi import APIRouter, Depends, HTTPException, Query
from web3 import Web3
import structlog
from .dependencies import get_session
from .schemas import AllowanceResponse, FeedRecordView, FeedResponse, FeedStatusResponse, format_units
from ..auth.api_key import verify_api_key
from ..errors import LedgerError
from ..session import FeedSession

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])
log = structlog.get_logger()


@router.get("/feed", response_model=FeedResponse)
async def get_feed(
    limit: int | None = Query(default=None, ge=1),
    session: FeedSession = Depends(get_session),
):
    records = session.feed.snapshot()
    if limit is not None:
        records = records[:limit]
    decimals = session.settings.TOKEN_DECIMALS
    return FeedResponse(
        status=FeedStatusResponse(**session.status()),
        total=len(records),
        records=[FeedRecordView.from_record(r, decimals) for r in records],
    )


@router.get("/feed/status", response_model=FeedStatusResponse)
async def get_feed_status(session: FeedSession = Depends(get_session)):
    return FeedStatusResponse(**session.status())


@router.get("/allowance", response_model=AllowanceResponse)
async def get_allowance(
    owner: str,
    spender: str,
    session: FeedSession = Depends(get_session),
):
    for name, address in (("owner", owner), ("spender", spender)):
        if not Web3.is_address(address):
            raise HTTPException(422, detail=f"Invalid {name} address")

    try:
        amount = await session.ledger.allowance(owner, spender)
    except LedgerError as e:
        log.warning("allowance.lookup_failed", owner=owner, spender=spender, error=str(e))
        raise HTTPException(502, detail="Ledger unavailable")

    return AllowanceResponse(
        owner=owner,
        spender=spender,
        amount=str(amount),
        amount_display=format_units(amount, session.settings.TOKEN_DECIMALS),
    )
