"""Interval store reads and the overlap arithmetic shared by grid and holds.

Active intervals are confirmed or pending reservations plus hold rows whose
``expires_at`` is still in the future. Expired holds are filtered here at
query time, so they stop blocking lanes even before the sweeper deletes them.
"""
from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import and_, select, union_all
from sqlalchemy.ext.asyncio import AsyncSession

from backend.lanebook.db.schema import lane_hold, reservation


ACTIVE_RESERVATION_STATUSES = ("pending", "confirmed")


@dataclass(frozen=True, order=True)
class Interval:
    lane_id: int
    booking_date: date
    start_minute: int
    end_minute: int

    def conflicts_with(self, other: Interval) -> bool:
        return (
            self.lane_id == other.lane_id
            and self.booking_date == other.booking_date
            and overlaps(self.start_minute, self.end_minute, other.start_minute, other.end_minute)
        )


def overlaps(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open [start, end) overlap; touching edges do not conflict."""
    return start_a < end_b and start_b < end_a


def busy_lanes(intervals: Iterable[Interval], start_minute: int, end_minute: int) -> set[int]:
    return {
        interval.lane_id
        for interval in intervals
        if overlaps(interval.start_minute, interval.end_minute, start_minute, end_minute)
    }


def free_lanes(
    lane_ids: Sequence[int],
    intervals: Iterable[Interval],
    start_minute: int,
    end_minute: int,
) -> list[int]:
    """Lanes with no active interval over [start, end), ascending by id."""
    busy = busy_lanes(intervals, start_minute, end_minute)
    return [lane_id for lane_id in sorted(lane_ids) if lane_id not in busy]


async def list_active_intervals(
    session: AsyncSession,
    *,
    venue_id: str,
    booking_date: date,
    start_minute: int,
    end_minute: int,
    now: datetime,
    lane_ids: Sequence[int] | None = None,
) -> list[Interval]:
    """Read every active interval overlapping the window from the store."""
    reservation_filter = [
        reservation.c.venue_id == venue_id,
        reservation.c.booking_date == booking_date,
        reservation.c.status.in_(ACTIVE_RESERVATION_STATUSES),
        reservation.c.start_minute < end_minute,
        reservation.c.end_minute > start_minute,
    ]
    hold_filter = [
        lane_hold.c.venue_id == venue_id,
        lane_hold.c.booking_date == booking_date,
        lane_hold.c.expires_at > now,
        lane_hold.c.start_minute < end_minute,
        lane_hold.c.end_minute > start_minute,
    ]
    if lane_ids is not None:
        reservation_filter.append(reservation.c.lane_id.in_(list(lane_ids)))
        hold_filter.append(lane_hold.c.lane_id.in_(list(lane_ids)))

    query = union_all(
        select(reservation.c.lane_id, reservation.c.start_minute, reservation.c.end_minute).where(
            and_(*reservation_filter)
        ),
        select(lane_hold.c.lane_id, lane_hold.c.start_minute, lane_hold.c.end_minute).where(
            and_(*hold_filter)
        ),
    )
    rows = await session.execute(query)
    return sorted(
        Interval(
            lane_id=row.lane_id,
            booking_date=booking_date,
            start_minute=row.start_minute,
            end_minute=row.end_minute,
        )
        for row in rows
    )
