"""Seed the demo venue: ``python -m backend.lanebook.db.seed``."""
import asyncio

from loguru import logger

from backend.lanebook.core.log_config import configure_logging
from backend.lanebook.db.session import SessionLocal, engine
from backend.lanebook.services.venue_config import DEMO_VENUE, VenueConfig, save_venue_config


async def seed_venue(session_factory=SessionLocal, config: VenueConfig = DEMO_VENUE) -> None:
    async with session_factory() as session:
        async with session.begin():
            await save_venue_config(session, config)
    logger.info("Seeded venue {} ({} lanes, {})", config.venue_id, config.lane_count, config.timezone)


async def main() -> None:
    configure_logging()
    try:
        await seed_venue()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
