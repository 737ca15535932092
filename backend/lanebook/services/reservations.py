"""Reservation Finalizer: turn an unexpired hold into durable reservations."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from loguru import logger
from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.lanebook.core.errors import HoldExpired, HoldNotFound, ReservationNotFound, ReservationStateConflict
from backend.lanebook.core.locks import LaneLocks, lane_lock_key
from backend.lanebook.db.errors import store_errors
from backend.lanebook.db.schema import lane_hold, reservation
from backend.lanebook.services.holds import Hold, find_hold
from backend.lanebook.services.notifications import Notifier, notify_created


@dataclass(frozen=True)
class CustomerDetails:
    name: str
    email: str
    phone: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Reservation:
    id: str
    venue_id: str
    lane_id: int
    booking_date: date
    start_minute: int
    end_minute: int
    hold_token: str
    hold_expires_at: datetime
    customer_name: str
    customer_email: str
    customer_phone: str | None
    party_size: int
    notes: str | None
    status: str
    price: Decimal
    payment_method: str
    payment_ref: str | None
    created_at: datetime
    cancelled_at: datetime | None


def reservation_from_row(row) -> Reservation:
    return Reservation(
        id=row["id"],
        venue_id=row["venue_id"],
        lane_id=row["lane_id"],
        booking_date=row["booking_date"],
        start_minute=row["start_minute"],
        end_minute=row["end_minute"],
        hold_token=row["hold_token"],
        hold_expires_at=row["hold_expires_at"],
        customer_name=row["customer_name"],
        customer_email=row["customer_email"],
        customer_phone=row["customer_phone"],
        party_size=row["party_size"],
        notes=row["notes"],
        status=row["status"],
        price=Decimal(row["price"]),
        payment_method=row["payment_method"],
        payment_ref=row["payment_ref"],
        created_at=row["created_at"],
        cancelled_at=row["cancelled_at"],
    )


def split_amount(total: Decimal, parts: int) -> list[Decimal]:
    """Split into whole cents summing exactly to ``total``; extra cents go first."""
    cents = int((total * 100).to_integral_value())
    base, remainder = divmod(cents, parts)
    return [Decimal(base + (1 if i < remainder else 0)) / 100 for i in range(parts)]


def split_count(total: int, parts: int) -> list[int]:
    base, remainder = divmod(total, parts)
    return [base + (1 if i < remainder else 0) for i in range(parts)]


async def _reservations_for_token(session: AsyncSession, token: str) -> list[Reservation]:
    rows = await session.execute(
        select(reservation).where(reservation.c.hold_token == token).order_by(reservation.c.lane_id)
    )
    return [reservation_from_row(row) for row in rows.mappings()]


async def _convert(
    session: AsyncSession,
    hold: Hold,
    customer: CustomerDetails,
    payment_method: str,
    now: datetime,
) -> list[Reservation]:
    lanes = hold.lane_ids
    prices = split_amount(hold.estimated_amount, len(lanes))
    party_sizes = split_count(hold.party_size, len(lanes))
    rows = [
        {
            "id": str(uuid4()),
            "venue_id": hold.venue_id,
            "lane_id": lane_id,
            "booking_date": hold.booking_date,
            "start_minute": hold.start_minute,
            "end_minute": hold.end_minute,
            "hold_token": hold.token,
            "hold_expires_at": hold.expires_at,
            "customer_name": customer.name,
            "customer_email": customer.email,
            "customer_phone": customer.phone,
            "party_size": party_size,
            "notes": customer.notes if customer.notes is not None else hold.notes,
            "status": "pending",
            "price": price,
            "payment_method": payment_method,
            "payment_ref": None,
            "created_at": now,
            "cancelled_at": None,
        }
        for lane_id, price, party_size in zip(lanes, prices, party_sizes)
    ]
    await session.execute(insert(reservation), rows)
    await session.execute(delete(lane_hold).where(lane_hold.c.token == hold.token))
    return [reservation_from_row(row) for row in rows]


async def commit_hold(
    session: AsyncSession,
    locks: LaneLocks,
    *,
    token: str,
    customer: CustomerDetails,
    payment_method: str = "card",
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> list[Reservation]:
    """Consume the hold behind ``token`` and create one pending reservation per lane.

    Re-committing a token that was already converted returns the same
    reservations for as long as the original hold would have lived; after
    that ``HoldNotFound`` is raised. A token with neither hold rows nor
    reservations was swept, purged or released after it lapsed, and is
    reported as ``HoldExpired``.
    """
    now = now or datetime.now(timezone.utc)

    with store_errors("commit_hold"):
        async with session.begin():
            hold = await find_hold(session, token)
            existing = [] if hold is not None else await _reservations_for_token(session, token)
    if hold is None:
        return _replay(token, existing, now)
    if hold.is_expired(now):
        raise HoldExpired()

    keys = [lane_lock_key(hold.venue_id, lane_id, hold.booking_date) for lane_id in hold.lane_ids]
    async with locks.acquire(keys):
        with store_errors("commit_hold"):
            async with session.begin():
                # Re-read under the locks; a concurrent commit may have won.
                hold = await find_hold(session, token)
                if hold is None:
                    existing = await _reservations_for_token(session, token)
                elif hold.is_expired(now):
                    raise HoldExpired()
                else:
                    created = await _convert(session, hold, customer, payment_method, now)
    if hold is None:
        return _replay(token, existing, now)

    logger.info(
        "Committed hold {}... into reservations {} for {}",
        token[:8],
        [r.id for r in created],
        customer.email,
    )
    await notify_created(notifier, created)
    return created


def _replay(token: str, existing: list[Reservation], now: datetime) -> list[Reservation]:
    if not existing:
        raise HoldExpired()
    if existing[0].hold_expires_at > now:
        logger.info("Replaying commit for hold {}...", token[:8])
        return existing
    raise HoldNotFound()


async def get_reservation(session: AsyncSession, reservation_id: str) -> Reservation:
    with store_errors("get_reservation"):
        async with session.begin():
            row = (
                (await session.execute(select(reservation).where(reservation.c.id == reservation_id)))
                .mappings()
                .one_or_none()
            )
    if row is None:
        raise ReservationNotFound()
    return reservation_from_row(row)


async def list_reservations_for_token(session: AsyncSession, token: str) -> list[Reservation]:
    with store_errors("list_reservations_for_token"):
        async with session.begin():
            return await _reservations_for_token(session, token)


async def confirm_payment(session: AsyncSession, reservation_id: str, *, payment_ref: str) -> Reservation:
    """Payment collaborator hook: pending -> confirmed."""
    with store_errors("confirm_payment"):
        async with session.begin():
            result = await session.execute(
                update(reservation)
                .where(reservation.c.id == reservation_id, reservation.c.status == "pending")
                .values(status="confirmed", payment_ref=payment_ref)
            )
            row = (
                (await session.execute(select(reservation).where(reservation.c.id == reservation_id)))
                .mappings()
                .one_or_none()
            )
    if row is None:
        raise ReservationNotFound()
    current = reservation_from_row(row)
    if result.rowcount == 0 and not (current.status == "confirmed" and current.payment_ref == payment_ref):
        raise ReservationStateConflict(f"Reservation {reservation_id} is {current.status}, cannot confirm")
    if result.rowcount:
        logger.info("Reservation {} confirmed (payment {})", reservation_id, payment_ref)
    return current
