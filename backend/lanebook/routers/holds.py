from datetime import datetime, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.lanebook.core.errors import HoldNotFound
from backend.lanebook.core.locks import LaneLocks, get_lane_locks
from backend.lanebook.db.session import get_session
from backend.lanebook.routers.reservations import reservation_out
from backend.lanebook.routers.schemas import CommitHoldIn, CommitHoldOut, CreateHoldIn, HoldOut
from backend.lanebook.services.holds import Hold, create_hold, get_hold, release_hold
from backend.lanebook.services.notifications import Notifier, get_notifier
from backend.lanebook.services.reservations import CustomerDetails, commit_hold


router = APIRouter()


def _hold_out(hold: Hold) -> HoldOut:
    remaining = (hold.expires_at - datetime.now(timezone.utc)).total_seconds()
    return HoldOut(
        token=hold.token,
        venue_id=hold.venue_id,
        date=hold.booking_date,
        start_minute=hold.start_minute,
        end_minute=hold.end_minute,
        lane_ids=hold.lane_ids,
        party_size=hold.party_size,
        estimated_amount=hold.estimated_amount,
        expires_at=hold.expires_at,
        expires_in_seconds=max(0, int(remaining)),
    )


@router.post("/holds", response_model=HoldOut, status_code=status.HTTP_201_CREATED)
async def create_hold_endpoint(
    payload: CreateHoldIn,
    session: AsyncSession = Depends(get_session),
    locks: LaneLocks = Depends(get_lane_locks),
) -> HoldOut:
    hold = await create_hold(
        session,
        locks,
        venue_id=payload.venue_id,
        booking_date=payload.date,
        start_minute=payload.start_minute,
        duration_minutes=payload.duration_minutes,
        lanes_requested=payload.lanes,
        party_size=payload.party_size,
        notes=payload.notes,
    )
    return _hold_out(hold)


@router.get("/holds/{token}", response_model=HoldOut)
async def get_hold_endpoint(
    token: str,
    session: AsyncSession = Depends(get_session),
) -> HoldOut:
    return _hold_out(await get_hold(session, token))


@router.delete("/holds/{token}", status_code=status.HTTP_204_NO_CONTENT)
async def release_hold_endpoint(
    token: str,
    session: AsyncSession = Depends(get_session),
) -> Response:
    if not await release_hold(session, token):
        raise HoldNotFound()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/holds/{token}/commit", response_model=CommitHoldOut, status_code=status.HTTP_201_CREATED)
async def commit_hold_endpoint(
    token: str,
    payload: CommitHoldIn,
    session: AsyncSession = Depends(get_session),
    locks: LaneLocks = Depends(get_lane_locks),
    notifier: Notifier = Depends(get_notifier),
) -> CommitHoldOut:
    reservations = await commit_hold(
        session,
        locks,
        token=token,
        customer=CustomerDetails(
            name=payload.name,
            email=payload.email,
            phone=payload.phone,
            notes=payload.notes,
        ),
        payment_method=payload.payment_method,
        notifier=notifier,
    )
    return CommitHoldOut(
        reservations=[reservation_out(r) for r in reservations],
        total_amount=sum((r.price for r in reservations), Decimal(0)),
    )
