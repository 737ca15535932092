"""lane holds and reservations

Revision ID: 3c1f9a7d2b10
Revises:
Create Date: 2025-11-20 09:12:44.318502

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f9a7d2b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "venue",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("lane_count", sa.Integer, nullable=False),
        sa.Column("open_minute", sa.Integer, nullable=False),
        sa.Column("close_minute", sa.Integer, nullable=False),
        sa.Column("min_duration_minutes", sa.Integer, nullable=False),
        sa.Column("max_duration_minutes", sa.Integer, nullable=False),
        sa.Column("slot_increment_minutes", sa.Integer, nullable=False),
        sa.Column("max_days_in_future", sa.Integer, nullable=False),
        sa.Column("same_day_lead_minutes", sa.Integer, nullable=False, server_default="15"),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint("lane_count >= 1", name="ck_venue_lane_count"),
        sa.CheckConstraint("open_minute < close_minute", name="ck_venue_window"),
    )
    op.create_table(
        "venue_rate",
        sa.Column("venue_id", sa.String(64), sa.ForeignKey("venue.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("day_of_week", sa.Integer, primary_key=True),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_venue_rate_day"),
    )
    op.create_table(
        "lane_hold",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("token", sa.String(64), nullable=False),
        sa.Column("venue_id", sa.String(64), sa.ForeignKey("venue.id"), nullable=False),
        sa.Column("lane_id", sa.Integer, nullable=False),
        sa.Column("booking_date", sa.Date, nullable=False),
        sa.Column("start_minute", sa.Integer, nullable=False),
        sa.Column("end_minute", sa.Integer, nullable=False),
        sa.Column("party_size", sa.Integer, nullable=False),
        sa.Column("notes", sa.Text),
        sa.Column("estimated_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("token", "lane_id", name="uq_lane_hold_token_lane"),
        sa.CheckConstraint("start_minute < end_minute", name="ck_lane_hold_range"),
    )
    op.create_index("ix_lane_hold_token", "lane_hold", ["token"])
    op.create_index("ix_lane_hold_slot", "lane_hold", ["venue_id", "booking_date", "lane_id"])
    op.create_index("ix_lane_hold_expires_at", "lane_hold", ["expires_at"])

    op.create_table(
        "reservation",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("venue_id", sa.String(64), sa.ForeignKey("venue.id"), nullable=False),
        sa.Column("lane_id", sa.Integer, nullable=False),
        sa.Column("booking_date", sa.Date, nullable=False),
        sa.Column("start_minute", sa.Integer, nullable=False),
        sa.Column("end_minute", sa.Integer, nullable=False),
        sa.Column("hold_token", sa.String(64), nullable=False),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("customer_name", sa.String(200), nullable=False),
        sa.Column("customer_email", sa.String(254), nullable=False),
        sa.Column("customer_phone", sa.String(32)),
        sa.Column("party_size", sa.Integer, nullable=False),
        sa.Column("notes", sa.Text),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=False),
        sa.Column("payment_ref", sa.String(128)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("hold_token", "lane_id", name="uq_reservation_hold_lane"),
        sa.CheckConstraint("start_minute < end_minute", name="ck_reservation_range"),
        sa.CheckConstraint("status IN ('pending', 'confirmed', 'cancelled')", name="ck_reservation_status"),
    )
    op.create_index("ix_reservation_slot", "reservation", ["venue_id", "booking_date", "lane_id"])

    if op.get_bind().dialect.name == "postgresql":
        # Last line of defence behind the lane locks: overlapping active
        # intervals on one lane fail at commit.
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist;")
        op.execute(
            """
            ALTER TABLE reservation
              ADD CONSTRAINT ex_reservation_lane_overlap
              EXCLUDE USING gist (
                venue_id WITH =,
                lane_id WITH =,
                booking_date WITH =,
                int4range(start_minute, end_minute, '[)') WITH &&
              ) WHERE (status IN ('pending', 'confirmed'));
            """
        )
        op.execute(
            """
            ALTER TABLE lane_hold
              ADD CONSTRAINT ex_lane_hold_lane_overlap
              EXCLUDE USING gist (
                venue_id WITH =,
                lane_id WITH =,
                booking_date WITH =,
                int4range(start_minute, end_minute, '[)') WITH &&
              );
            """
        )


def downgrade() -> None:
    op.drop_index("ix_reservation_slot", table_name="reservation")
    op.drop_table("reservation")
    op.drop_index("ix_lane_hold_expires_at", table_name="lane_hold")
    op.drop_index("ix_lane_hold_slot", table_name="lane_hold")
    op.drop_index("ix_lane_hold_token", table_name="lane_hold")
    op.drop_table("lane_hold")
    op.drop_table("venue_rate")
    op.drop_table("venue")
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP EXTENSION IF EXISTS btree_gist;")
