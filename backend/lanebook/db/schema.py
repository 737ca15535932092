from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.types import TypeDecorator


metadata = MetaData()


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite drops offsets on write, so values are normalised to UTC before
    binding and re-tagged as UTC when read back.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime bound to a UTC column")
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


venue = Table(
    "venue",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("name", String(200), nullable=False),
    Column("timezone", String(64), nullable=False),
    Column("lane_count", Integer, nullable=False),
    Column("open_minute", Integer, nullable=False),
    Column("close_minute", Integer, nullable=False),
    Column("min_duration_minutes", Integer, nullable=False),
    Column("max_duration_minutes", Integer, nullable=False),
    Column("slot_increment_minutes", Integer, nullable=False),
    Column("max_days_in_future", Integer, nullable=False),
    Column("same_day_lead_minutes", Integer, nullable=False, default=15),
    Column("hourly_rate", Numeric(10, 2), nullable=False),
    CheckConstraint("lane_count >= 1", name="ck_venue_lane_count"),
    CheckConstraint("open_minute < close_minute", name="ck_venue_window"),
)

# Per-weekday override of venue.hourly_rate; day_of_week follows date.weekday().
venue_rate = Table(
    "venue_rate",
    metadata,
    Column("venue_id", String(64), ForeignKey("venue.id", ondelete="CASCADE"), primary_key=True),
    Column("day_of_week", Integer, primary_key=True),
    Column("hourly_rate", Numeric(10, 2), nullable=False),
    CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_venue_rate_day"),
)

lane_hold = Table(
    "lane_hold",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False),
    Column("venue_id", String(64), ForeignKey("venue.id"), nullable=False),
    Column("lane_id", Integer, nullable=False),
    Column("booking_date", Date, nullable=False),
    Column("start_minute", Integer, nullable=False),
    Column("end_minute", Integer, nullable=False),
    Column("party_size", Integer, nullable=False),
    Column("notes", Text),
    # Total for the whole hold, repeated on each lane row.
    Column("estimated_amount", Numeric(10, 2), nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("expires_at", UTCDateTime, nullable=False),
    UniqueConstraint("token", "lane_id", name="uq_lane_hold_token_lane"),
    CheckConstraint("start_minute < end_minute", name="ck_lane_hold_range"),
    Index("ix_lane_hold_token", "token"),
    Index("ix_lane_hold_slot", "venue_id", "booking_date", "lane_id"),
    Index("ix_lane_hold_expires_at", "expires_at"),
)

reservation = Table(
    "reservation",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("venue_id", String(64), ForeignKey("venue.id"), nullable=False),
    Column("lane_id", Integer, nullable=False),
    Column("booking_date", Date, nullable=False),
    Column("start_minute", Integer, nullable=False),
    Column("end_minute", Integer, nullable=False),
    Column("hold_token", String(64), nullable=False),
    Column("hold_expires_at", UTCDateTime, nullable=False),
    Column("customer_name", String(200), nullable=False),
    Column("customer_email", String(254), nullable=False),
    Column("customer_phone", String(32)),
    Column("party_size", Integer, nullable=False),
    Column("notes", Text),
    Column("status", String(16), nullable=False),
    Column("price", Numeric(10, 2), nullable=False),
    Column("payment_method", String(32), nullable=False),
    Column("payment_ref", String(128)),
    Column("created_at", UTCDateTime, nullable=False),
    Column("cancelled_at", UTCDateTime),
    # A token converts into at most one reservation per lane.
    UniqueConstraint("hold_token", "lane_id", name="uq_reservation_hold_lane"),
    CheckConstraint("start_minute < end_minute", name="ck_reservation_range"),
    CheckConstraint("status IN ('pending', 'confirmed', 'cancelled')", name="ck_reservation_status"),
    Index("ix_reservation_slot", "venue_id", "booking_date", "lane_id"),
)
