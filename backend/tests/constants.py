from datetime import date, datetime, timezone
from decimal import Decimal

from backend.lanebook.services.venue_config import VenueConfig


# Monday morning; DAY is the Saturday after next, so the weekend rate applies.
NOW = datetime(2024, 5, 20, 9, 0, tzinfo=timezone.utc)
DAY = date(2024, 6, 1)

TEST_VENUE = VenueConfig(
    venue_id="test-lanes",
    name="Test Lanes",
    timezone="UTC",
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


def hhmm(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)
