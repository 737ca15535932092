from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.lanebook.core.config import settings
from backend.lanebook.core.errors import CancellationDenied, ReservationNotFound
from backend.lanebook.db.errors import store_errors
from backend.lanebook.db.schema import reservation
from backend.lanebook.services.notifications import Notifier, notify_cancelled
from backend.lanebook.services.reservations import Reservation, reservation_from_row
from backend.lanebook.services.venue_config import VenueConfig, load_venue_config


def cancellation_cutoff() -> timedelta:
    return timedelta(hours=settings.CANCELLATION_CUTOFF_HOURS)


def cancellation_deadline(config: VenueConfig, booking: Reservation, cutoff: timedelta | None = None) -> datetime:
    """Last instant at which ``booking`` may still be cancelled."""
    start = config.local_start(booking.booking_date, booking.start_minute)
    return start - (cutoff or cancellation_cutoff())


def check_cancellable(config: VenueConfig, booking: Reservation, now: datetime) -> None:
    if booking.status == "cancelled":
        raise CancellationDenied("already cancelled")
    if now > cancellation_deadline(config, booking):
        raise CancellationDenied("too late")


async def cancel_reservation(
    session: AsyncSession,
    reservation_id: str,
    *,
    now: datetime | None = None,
    notifier: Notifier | None = None,
) -> Reservation:
    now = now or datetime.now(timezone.utc)

    with store_errors("cancel_reservation"):
        async with session.begin():
            row = (
                (await session.execute(select(reservation).where(reservation.c.id == reservation_id)))
                .mappings()
                .one_or_none()
            )
            if row is None:
                raise ReservationNotFound()
            booking = reservation_from_row(row)
            config = await load_venue_config(session, booking.venue_id)
            check_cancellable(config, booking, now)

            result = await session.execute(
                update(reservation)
                .where(reservation.c.id == reservation_id, reservation.c.status != "cancelled")
                .values(status="cancelled", cancelled_at=now)
            )
            if result.rowcount == 0:
                raise CancellationDenied("already cancelled")

    cancelled = reservation_from_row({**row, "status": "cancelled", "cancelled_at": now})
    logger.info("Reservation {} cancelled, lane {} freed on {}", reservation_id, booking.lane_id, booking.booking_date)
    await notify_cancelled(notifier, cancelled)
    return cancelled
