from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from backend.lanebook.db.errors import store_errors
from backend.lanebook.services.intervals import Interval, free_lanes, list_active_intervals
from backend.lanebook.services.venue_config import VenueConfig, load_venue_config


@dataclass(frozen=True)
class Slot:
    start_minute: int
    end_minute: int
    free_lane_ids: list[int]
    available_lanes: int
    estimated_amount: Decimal


def candidate_starts(
    config: VenueConfig,
    booking_date: date,
    duration_minutes: int,
    now: datetime,
) -> list[int]:
    starts = config.start_offsets(duration_minutes)
    earliest = config.earliest_start_minute(booking_date, now)
    if earliest is None:
        return starts
    return [start for start in starts if start > earliest]


def compute_slot_grid(
    config: VenueConfig,
    booking_date: date,
    duration_minutes: int,
    lanes_requested: int,
    intervals: Sequence[Interval],
    now: datetime,
) -> list[Slot]:
    """Bookable slots for the day, given the intervals already committed.

    Pure: it neither reads nor writes the store, so it can be re-run on every
    form change. A slot is only emitted when at least ``lanes_requested``
    lanes are free; the lowest-numbered free lanes are reported.
    """
    config.validate_request(booking_date, duration_minutes, lanes_requested, now)

    amount = config.estimate(booking_date, duration_minutes, lanes_requested)
    slots: list[Slot] = []
    for start in candidate_starts(config, booking_date, duration_minutes, now):
        end = start + duration_minutes
        free = free_lanes(config.lane_ids, intervals, start, end)
        if len(free) < lanes_requested:
            continue
        slots.append(
            Slot(
                start_minute=start,
                end_minute=end,
                free_lane_ids=free[:lanes_requested],
                available_lanes=len(free),
                estimated_amount=amount,
            )
        )
    return slots


async def query_grid(
    session: AsyncSession,
    *,
    venue_id: str,
    booking_date: date,
    duration_minutes: int,
    lanes_requested: int,
    now: datetime | None = None,
) -> tuple[VenueConfig, list[Slot]]:
    """Re-read the day's intervals and compute the grid. The result is advisory."""
    now = now or datetime.now(timezone.utc)
    with store_errors("query_grid"):
        async with session.begin():
            config = await load_venue_config(session, venue_id)
            config.validate_request(booking_date, duration_minutes, lanes_requested, now)
            intervals = await list_active_intervals(
                session,
                venue_id=venue_id,
                booking_date=booking_date,
                start_minute=config.open_minute,
                end_minute=config.close_minute,
                now=now,
            )
    return config, compute_slot_grid(config, booking_date, duration_minutes, lanes_requested, intervals, now)
