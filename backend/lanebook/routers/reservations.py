from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.lanebook.db.session import get_session
from backend.lanebook.routers.schemas import ConfirmPaymentIn, ReservationOut
from backend.lanebook.services.cancellation import cancel_reservation
from backend.lanebook.services.notifications import Notifier, get_notifier
from backend.lanebook.services.reservations import (
    Reservation,
    confirm_payment,
    get_reservation,
    list_reservations_for_token,
)


router = APIRouter()


def reservation_out(booking: Reservation) -> ReservationOut:
    return ReservationOut(
        id=booking.id,
        venue_id=booking.venue_id,
        lane_id=booking.lane_id,
        date=booking.booking_date,
        start_minute=booking.start_minute,
        end_minute=booking.end_minute,
        hold_token=booking.hold_token,
        customer_name=booking.customer_name,
        customer_email=booking.customer_email,
        customer_phone=booking.customer_phone,
        party_size=booking.party_size,
        notes=booking.notes,
        status=booking.status,
        price=booking.price,
        payment_method=booking.payment_method,
        payment_ref=booking.payment_ref,
        created_at=booking.created_at,
        cancelled_at=booking.cancelled_at,
    )


@router.get("/reservations", response_model=list[ReservationOut])
async def reservations_for_token(
    token: str = Query(min_length=1),
    session: AsyncSession = Depends(get_session),
) -> list[ReservationOut]:
    return [reservation_out(r) for r in await list_reservations_for_token(session, token)]


@router.get("/reservations/{reservation_id}", response_model=ReservationOut)
async def reservation_detail(
    reservation_id: str,
    session: AsyncSession = Depends(get_session),
) -> ReservationOut:
    return reservation_out(await get_reservation(session, reservation_id))


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationOut)
async def cancel_endpoint(
    reservation_id: str,
    session: AsyncSession = Depends(get_session),
    notifier: Notifier = Depends(get_notifier),
) -> ReservationOut:
    return reservation_out(await cancel_reservation(session, reservation_id, notifier=notifier))


@router.post("/reservations/{reservation_id}/payment", response_model=ReservationOut)
async def confirm_payment_endpoint(
    reservation_id: str,
    payload: ConfirmPaymentIn,
    session: AsyncSession = Depends(get_session),
) -> ReservationOut:
    return reservation_out(await confirm_payment(session, reservation_id, payment_ref=payload.payment_ref))
