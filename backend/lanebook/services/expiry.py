"""Eager cleanup of expired holds.

Reads already ignore holds past ``expires_at``; this sweep only keeps the
table small. Deleting a row that is expired can never free a lane twice,
because the finalizer refuses expired holds on its own.
"""
import asyncio
from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.lanebook.core.errors import StoreUnavailable
from backend.lanebook.db.errors import store_errors
from backend.lanebook.db.schema import lane_hold


async def sweep_expired_holds(session: AsyncSession, *, now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    with store_errors("sweep_expired_holds"):
        async with session.begin():
            result = await session.execute(delete(lane_hold).where(lane_hold.c.expires_at <= now))
    if result.rowcount:
        logger.info("Swept {} expired hold rows", result.rowcount)
    return result.rowcount


async def run_hold_sweeper(session_factory: async_sessionmaker, interval_seconds: float) -> None:
    """Sweep forever; cancelled by the application lifespan on shutdown."""
    while True:
        try:
            async with session_factory() as session:
                await sweep_expired_holds(session)
        except StoreUnavailable:
            logger.warning("Hold sweep skipped, store unavailable")
        except Exception:
            logger.exception("Hold sweep failed")
        await asyncio.sleep(interval_seconds)
