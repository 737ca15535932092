from __future__ import annotations

from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.lanebook.db.errors import store_errors
from backend.lanebook.db.session import get_session
from backend.lanebook.routers.schemas import GridOut, SlotOut, VenueConfigOut
from backend.lanebook.services.slot_grid import query_grid
from backend.lanebook.services.venue_config import load_venue_config


router = APIRouter()


@router.get("/venues/{venue_id}/config", response_model=VenueConfigOut)
async def venue_config(
    venue_id: str,
    session: AsyncSession = Depends(get_session),
) -> VenueConfigOut:
    with store_errors("venue_config"):
        config = await load_venue_config(session, venue_id)
    return VenueConfigOut(
        venue_id=config.venue_id,
        name=config.name,
        timezone=config.timezone,
        lane_count=config.lane_count,
        open_minute=config.open_minute,
        close_minute=config.close_minute,
        duration_options=config.duration_options(),
        slot_increment_minutes=config.slot_increment_minutes,
        max_days_in_future=config.max_days_in_future,
    )


@router.get("/venues/{venue_id}/grid", response_model=GridOut)
async def availability_grid(
    venue_id: str,
    booking_date: date = Query(alias="date"),
    duration: int = Query(ge=1),
    lanes: int = Query(default=1, ge=1),
    session: AsyncSession = Depends(get_session),
) -> GridOut:
    config, slots = await query_grid(
        session,
        venue_id=venue_id,
        booking_date=booking_date,
        duration_minutes=duration,
        lanes_requested=lanes,
    )
    return GridOut(
        venue_id=venue_id,
        date=booking_date,
        duration_minutes=duration,
        lanes_requested=lanes,
        slots=[
            SlotOut(
                start_minute=slot.start_minute,
                end_minute=slot.end_minute,
                start_at=config.local_start(booking_date, slot.start_minute),
                end_at=config.local_start(booking_date, slot.start_minute) + timedelta(minutes=duration),
                lane_ids=slot.free_lane_ids,
                available_lanes=slot.available_lanes,
                estimated_amount=slot.estimated_amount,
            )
            for slot in slots
        ],
    )
