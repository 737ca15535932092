from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class VenueConfigOut(BaseModel):
    venue_id: str
    name: str
    timezone: str
    lane_count: int
    open_minute: int
    close_minute: int
    duration_options: list[int]
    slot_increment_minutes: int
    max_days_in_future: int


class SlotOut(BaseModel):
    start_minute: int
    end_minute: int
    # Local wall-clock start in the venue's timezone, e.g. "2024-06-01T18:00:00+02:00"
    start_at: datetime
    end_at: datetime
    lane_ids: list[int]
    available_lanes: int
    estimated_amount: Decimal


class GridOut(BaseModel):
    venue_id: str
    date: date
    duration_minutes: int
    lanes_requested: int
    slots: list[SlotOut]


class CreateHoldIn(BaseModel):
    venue_id: str
    date: date
    start_minute: int = Field(ge=0, lt=24 * 60)
    duration_minutes: int = Field(ge=1, le=24 * 60)
    lanes: int = Field(ge=1, le=64)
    party_size: int = Field(ge=1, le=200)
    notes: str | None = Field(default=None, max_length=1024)


class HoldOut(BaseModel):
    token: str
    venue_id: str
    date: date
    start_minute: int
    end_minute: int
    lane_ids: list[int]
    party_size: int
    estimated_amount: Decimal
    expires_at: datetime
    expires_in_seconds: int


class CommitHoldIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=254)
    phone: str | None = Field(default=None, max_length=32)
    notes: str | None = Field(default=None, max_length=1024)
    payment_method: str = Field(default="card", max_length=32)


class ReservationOut(BaseModel):
    id: str
    venue_id: str
    lane_id: int
    date: date
    start_minute: int
    end_minute: int
    hold_token: str
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


class CommitHoldOut(BaseModel):
    reservations: list[ReservationOut]
    total_amount: Decimal


class ConfirmPaymentIn(BaseModel):
    payment_ref: str = Field(min_length=1, max_length=128)
