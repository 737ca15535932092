"""Hand-off to the outbound notification/refund collaborator.

Dispatch happens after the state transition has committed. A failing
notifier is logged and never undoes the booking or cancellation.
"""
from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

from loguru import logger


if TYPE_CHECKING:
    from backend.lanebook.services.reservations import Reservation


class Notifier(Protocol):
    async def reservations_created(self, reservations: Sequence[Reservation]) -> None: ...

    async def reservation_cancelled(self, reservation: Reservation) -> None: ...


class LoggingNotifier:
    async def reservations_created(self, reservations: Sequence[Reservation]) -> None:
        first = reservations[0]
        logger.info(
            "Notify {}: {} lane(s) on {} from minute {} (token {}...)",
            first.customer_email,
            len(reservations),
            first.booking_date.isoformat(),
            first.start_minute,
            first.hold_token[:8],
        )

    async def reservation_cancelled(self, reservation: Reservation) -> None:
        logger.info(
            "Notify {}: reservation {} cancelled, refund of {} requested",
            reservation.customer_email,
            reservation.id,
            reservation.price,
        )


async def notify_created(notifier: Notifier | None, reservations: Sequence[Reservation]) -> None:
    if notifier is None or not reservations:
        return
    try:
        await notifier.reservations_created(reservations)
    except Exception:
        logger.exception("Notifier failed for reservations {}", [r.id for r in reservations])


async def notify_cancelled(notifier: Notifier | None, reservation: Reservation) -> None:
    if notifier is None:
        return
    try:
        await notifier.reservation_cancelled(reservation)
    except Exception:
        logger.exception("Notifier failed for cancelled reservation {}", reservation.id)


_notifier: Notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    """FastAPI dependency for the configured dispatcher."""
    return _notifier

