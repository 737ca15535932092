"""Hold Manager: claim lanes for a short grace period.

The read-check-write sequence runs under per-lane locks so two customers
can never both pass the availability check for the same lane. The first
read is optimistic and only picks which lanes to lock; the authoritative
check is repeated inside the write transaction once the locks are held.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from loguru import logger
from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.lanebook.core.config import settings
from backend.lanebook.core.errors import HoldExpired, HoldNotFound, InvalidInput, SlotUnavailable
from backend.lanebook.core.locks import LaneLocks, lane_lock_key
from backend.lanebook.db.errors import store_errors
from backend.lanebook.db.schema import lane_hold
from backend.lanebook.services.intervals import free_lanes, list_active_intervals
from backend.lanebook.services.slot_grid import candidate_starts
from backend.lanebook.services.venue_config import VenueConfig, load_venue_config


@dataclass(frozen=True)
class Hold:
    token: str
    venue_id: str
    lane_ids: list[int]
    booking_date: date
    start_minute: int
    end_minute: int
    party_size: int
    notes: str | None
    estimated_amount: Decimal
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


def new_hold_token() -> str:
    return secrets.token_urlsafe(24)


def hold_ttl() -> timedelta:
    return timedelta(minutes=settings.HOLD_TTL_MINUTES)


def _validate_hold_request(
    config: VenueConfig,
    *,
    booking_date: date,
    start_minute: int,
    duration_minutes: int,
    lanes_requested: int,
    party_size: int,
    now: datetime,
) -> None:
    config.validate_request(booking_date, duration_minutes, lanes_requested, now)
    if party_size < 1:
        raise InvalidInput("party size must be at least 1")
    if start_minute not in candidate_starts(config, booking_date, duration_minutes, now):
        raise InvalidInput(f"start {start_minute} is not a bookable start for this date and duration")


async def _claim_lanes(
    session: AsyncSession,
    config: VenueConfig,
    *,
    lane_ids: list[int],
    booking_date: date,
    start_minute: int,
    end_minute: int,
    party_size: int,
    notes: str | None,
    estimated_amount: Decimal,
    now: datetime,
    ttl: timedelta,
) -> Hold | None:
    """Re-check and insert under the caller's lane locks; None if a lane was taken."""
    async with session.begin():
        # Expired rows on these lanes would trip the exclusion constraint.
        await session.execute(
            delete(lane_hold).where(
                lane_hold.c.venue_id == config.venue_id,
                lane_hold.c.booking_date == booking_date,
                lane_hold.c.lane_id.in_(lane_ids),
                lane_hold.c.expires_at <= now,
            )
        )
        intervals = await list_active_intervals(
            session,
            venue_id=config.venue_id,
            booking_date=booking_date,
            start_minute=start_minute,
            end_minute=end_minute,
            now=now,
            lane_ids=lane_ids,
        )
        if intervals:
            return None

        token = new_hold_token()
        expires_at = now + ttl
        await session.execute(
            insert(lane_hold),
            [
                {
                    "token": token,
                    "venue_id": config.venue_id,
                    "lane_id": lane_id,
                    "booking_date": booking_date,
                    "start_minute": start_minute,
                    "end_minute": end_minute,
                    "party_size": party_size,
                    "notes": notes,
                    "estimated_amount": estimated_amount,
                    "created_at": now,
                    "expires_at": expires_at,
                }
                for lane_id in lane_ids
            ],
        )

    return Hold(
        token=token,
        venue_id=config.venue_id,
        lane_ids=lane_ids,
        booking_date=booking_date,
        start_minute=start_minute,
        end_minute=end_minute,
        party_size=party_size,
        notes=notes,
        estimated_amount=estimated_amount,
        created_at=now,
        expires_at=expires_at,
    )


async def create_hold(
    session: AsyncSession,
    locks: LaneLocks,
    *,
    venue_id: str,
    booking_date: date,
    start_minute: int,
    duration_minutes: int,
    lanes_requested: int,
    party_size: int,
    notes: str | None = None,
    now: datetime | None = None,
    ttl: timedelta | None = None,
) -> Hold:
    now = now or datetime.now(timezone.utc)
    ttl = ttl or hold_ttl()
    end_minute = start_minute + duration_minutes

    with store_errors("create_hold"):
        async with session.begin():
            config = await load_venue_config(session, venue_id)

    _validate_hold_request(
        config,
        booking_date=booking_date,
        start_minute=start_minute,
        duration_minutes=duration_minutes,
        lanes_requested=lanes_requested,
        party_size=party_size,
        now=now,
    )
    estimated_amount = config.estimate(booking_date, duration_minutes, lanes_requested)

    for attempt in range(1, settings.HOLD_CREATE_ATTEMPTS + 1):
        with store_errors("create_hold"):
            async with session.begin():
                intervals = await list_active_intervals(
                    session,
                    venue_id=venue_id,
                    booking_date=booking_date,
                    start_minute=start_minute,
                    end_minute=end_minute,
                    now=now,
                )
        free = free_lanes(config.lane_ids, intervals, start_minute, end_minute)
        if len(free) < lanes_requested:
            logger.info(
                "Slot {} {}+{} on venue {} has {} free lanes, {} requested",
                booking_date,
                start_minute,
                duration_minutes,
                venue_id,
                len(free),
                lanes_requested,
            )
            raise SlotUnavailable()

        picked = free[:lanes_requested]
        keys = [lane_lock_key(venue_id, lane_id, booking_date) for lane_id in picked]
        async with locks.acquire(keys):
            with store_errors("create_hold"):
                hold = await _claim_lanes(
                    session,
                    config,
                    lane_ids=picked,
                    booking_date=booking_date,
                    start_minute=start_minute,
                    end_minute=end_minute,
                    party_size=party_size,
                    notes=notes,
                    estimated_amount=estimated_amount,
                    now=now,
                    ttl=ttl,
                )
        if hold is not None:
            logger.info(
                "Hold {}... on venue {} lanes {} {} {}-{} until {}",
                hold.token[:8],
                venue_id,
                picked,
                booking_date,
                start_minute,
                end_minute,
                hold.expires_at.isoformat(),
            )
            return hold
        logger.info("Lanes {} were taken before the lock was acquired (attempt {})", picked, attempt)

    raise SlotUnavailable()


def _hold_from_rows(rows) -> Hold:
    first = rows[0]
    return Hold(
        token=first["token"],
        venue_id=first["venue_id"],
        lane_ids=sorted(row["lane_id"] for row in rows),
        booking_date=first["booking_date"],
        start_minute=first["start_minute"],
        end_minute=first["end_minute"],
        party_size=first["party_size"],
        notes=first["notes"],
        estimated_amount=Decimal(first["estimated_amount"]),
        created_at=first["created_at"],
        expires_at=first["expires_at"],
    )


async def find_hold(session: AsyncSession, token: str) -> Hold | None:
    """The hold for ``token`` regardless of expiry, or None once it is gone."""
    rows = (
        (await session.execute(select(lane_hold).where(lane_hold.c.token == token).order_by(lane_hold.c.lane_id)))
        .mappings()
        .all()
    )
    if not rows:
        return None
    return _hold_from_rows(rows)


async def get_hold(session: AsyncSession, token: str, *, now: datetime | None = None) -> Hold:
    now = now or datetime.now(timezone.utc)
    with store_errors("get_hold"):
        async with session.begin():
            hold = await find_hold(session, token)
    if hold is None:
        raise HoldNotFound()
    if hold.is_expired(now):
        raise HoldExpired()
    return hold


async def release_hold(session: AsyncSession, token: str) -> bool:
    """Drop a hold the customer abandoned. Returns False if nothing was held."""
    with store_errors("release_hold"):
        async with session.begin():
            result = await session.execute(delete(lane_hold).where(lane_hold.c.token == token))
    released = result.rowcount > 0
    if released:
        logger.info("Released hold {}...", token[:8])
    return released
