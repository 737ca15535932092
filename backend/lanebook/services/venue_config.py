from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from zoneinfo import ZoneInfo

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.lanebook.core.errors import InvalidInput, VenueNotFound
from backend.lanebook.db.schema import venue, venue_rate


CENT = Decimal("0.01")


@dataclass(frozen=True)
class VenueConfig:
    """Operating parameters for one venue, read once per request."""

    venue_id: str
    name: str
    timezone: str
    lane_count: int
    open_minute: int
    close_minute: int
    min_duration_minutes: int
    max_duration_minutes: int
    slot_increment_minutes: int
    max_days_in_future: int
    same_day_lead_minutes: int
    hourly_rate: Decimal
    # weekday (date.weekday()) -> hourly rate per lane
    weekday_rates: dict[int, Decimal] = field(default_factory=dict)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def lane_ids(self) -> list[int]:
        return list(range(1, self.lane_count + 1))

    def duration_options(self) -> list[int]:
        return list(
            range(self.min_duration_minutes, self.max_duration_minutes + 1, self.slot_increment_minutes)
        )

    def start_offsets(self, duration_minutes: int) -> list[int]:
        return list(
            range(self.open_minute, self.close_minute - duration_minutes + 1, self.slot_increment_minutes)
        )

    def local_now(self, now: datetime) -> datetime:
        return now.astimezone(self.tz)

    def local_start(self, booking_date: date, start_minute: int) -> datetime:
        midnight = datetime.combine(booking_date, datetime.min.time(), tzinfo=self.tz)
        # Wall-clock arithmetic: offsets count minutes from local midnight.
        return midnight + timedelta(minutes=start_minute)

    def hourly_rate_for(self, booking_date: date) -> Decimal:
        return self.weekday_rates.get(booking_date.weekday(), self.hourly_rate)

    def estimate(self, booking_date: date, duration_minutes: int, lanes: int) -> Decimal:
        amount = self.hourly_rate_for(booking_date) * Decimal(duration_minutes) / Decimal(60) * lanes
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)

    def validate_request(
        self,
        booking_date: date,
        duration_minutes: int,
        lanes_requested: int,
        now: datetime,
    ) -> None:
        """Reject requests outside the venue's bounds before touching the store."""
        if duration_minutes not in self.duration_options():
            raise InvalidInput(
                f"duration must be one of {self.duration_options()} minutes, got {duration_minutes}"
            )
        if not 1 <= lanes_requested <= self.lane_count:
            raise InvalidInput(f"lanes must be between 1 and {self.lane_count}, got {lanes_requested}")
        if duration_minutes > self.close_minute - self.open_minute:
            raise InvalidInput("duration exceeds the operating window")

        today = self.local_now(now).date()
        if booking_date < today:
            raise InvalidInput(f"{booking_date.isoformat()} is in the past")
        if booking_date > today + timedelta(days=self.max_days_in_future):
            raise InvalidInput(
                f"{booking_date.isoformat()} is beyond the {self.max_days_in_future}-day booking horizon"
            )

    def earliest_start_minute(self, booking_date: date, now: datetime) -> int | None:
        """Starts must be strictly later than this on the venue's current date."""
        local = self.local_now(now)
        if booking_date != local.date():
            return None
        return local.hour * 60 + local.minute + self.same_day_lead_minutes


# Fixed venue the first release hardcoded: 13:00-22:00, eight lanes,
# 15 per lane-hour on weekdays and 18 on Friday/Saturday.
DEMO_VENUE = VenueConfig(
    venue_id="demo-bowling",
    name="Demo Bowling",
    timezone="Europe/Berlin",
    lane_count=8,
    open_minute=13 * 60,
    close_minute=22 * 60,
    min_duration_minutes=15,
    max_duration_minutes=180,
    slot_increment_minutes=15,
    max_days_in_future=90,
    same_day_lead_minutes=15,
    hourly_rate=Decimal("15.00"),
    weekday_rates={4: Decimal("18.00"), 5: Decimal("18.00")},
)


async def load_venue_config(session: AsyncSession, venue_id: str) -> VenueConfig:
    row = (await session.execute(select(venue).where(venue.c.id == venue_id))).mappings().one_or_none()
    if row is None:
        raise VenueNotFound(f"Venue {venue_id} not found")

    rates = await session.execute(
        select(venue_rate.c.day_of_week, venue_rate.c.hourly_rate).where(venue_rate.c.venue_id == venue_id)
    )
    return VenueConfig(
        venue_id=row["id"],
        name=row["name"],
        timezone=row["timezone"],
        lane_count=row["lane_count"],
        open_minute=row["open_minute"],
        close_minute=row["close_minute"],
        min_duration_minutes=row["min_duration_minutes"],
        max_duration_minutes=row["max_duration_minutes"],
        slot_increment_minutes=row["slot_increment_minutes"],
        max_days_in_future=row["max_days_in_future"],
        same_day_lead_minutes=row["same_day_lead_minutes"],
        hourly_rate=Decimal(row["hourly_rate"]),
        weekday_rates={day: Decimal(rate) for day, rate in rates.all()},
    )


async def save_venue_config(session: AsyncSession, config: VenueConfig) -> None:
    """Upsert a venue and its rate table. Used for seeding; the caller commits."""
    await session.execute(delete(venue_rate).where(venue_rate.c.venue_id == config.venue_id))
    await session.execute(delete(venue).where(venue.c.id == config.venue_id))
    await session.execute(
        insert(venue).values(
            id=config.venue_id,
            name=config.name,
            timezone=config.timezone,
            lane_count=config.lane_count,
            open_minute=config.open_minute,
            close_minute=config.close_minute,
            min_duration_minutes=config.min_duration_minutes,
            max_duration_minutes=config.max_duration_minutes,
            slot_increment_minutes=config.slot_increment_minutes,
            max_days_in_future=config.max_days_in_future,
            same_day_lead_minutes=config.same_day_lead_minutes,
            hourly_rate=config.hourly_rate,
        )
    )
    if config.weekday_rates:
        await session.execute(
            insert(venue_rate),
            [
                {"venue_id": config.venue_id, "day_of_week": day, "hourly_rate": rate}
                for day, rate in sorted(config.weekday_rates.items())
            ],
        )
