import os
import tempfile
from datetime import date
from decimal import Decimal
from uuid import uuid4

# Settings are read at import time; point them at SQLite and in-process locks
# before the application modules load.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"lanebook-test-{uuid4().hex}.db")
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_PATH}")
os.environ["LANE_LOCK_BACKEND"] = "local"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import insert  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from backend.lanebook.core.locks import LocalLaneLocks, get_lane_locks  # noqa: E402
from backend.lanebook.db.schema import metadata, reservation  # noqa: E402
from backend.lanebook.db.session import get_session  # noqa: E402
from backend.lanebook.main import app  # noqa: E402
from backend.lanebook.services.notifications import get_notifier  # noqa: E402
from backend.lanebook.services.venue_config import VenueConfig, save_venue_config  # noqa: E402
from backend.tests.constants import DAY, NOW, TEST_VENUE  # noqa: E402


class RecordingNotifier:
    def __init__(self) -> None:
        self.created: list[list] = []
        self.cancelled: list = []

    async def reservations_created(self, reservations) -> None:
        self.created.append(list(reservations))

    async def reservation_cancelled(self, booking) -> None:
        self.cancelled.append(booking)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lanebook.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def venue(session_factory) -> VenueConfig:
    async with session_factory() as session:
        async with session.begin():
            await save_venue_config(session, TEST_VENUE)
    return TEST_VENUE


@pytest.fixture
def locks() -> LocalLaneLocks:
    return LocalLaneLocks(wait_seconds=2.0)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def seed_reservation(session_factory):
    async def _seed(
        lane_id: int,
        start_minute: int,
        end_minute: int,
        *,
        booking_date: date = DAY,
        status: str = "confirmed",
        venue_id: str = TEST_VENUE.venue_id,
    ) -> str:
        reservation_id = str(uuid4())
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    insert(reservation).values(
                        id=reservation_id,
                        venue_id=venue_id,
                        lane_id=lane_id,
                        booking_date=booking_date,
                        start_minute=start_minute,
                        end_minute=end_minute,
                        hold_token=f"seed-{reservation_id}",
                        hold_expires_at=NOW,
                        customer_name="Seeded Guest",
                        customer_email="seeded@example.com",
                        customer_phone=None,
                        party_size=4,
                        notes=None,
                        status=status,
                        price=Decimal("18.00"),
                        payment_method="card",
                        payment_ref=None,
                        created_at=NOW,
                        cancelled_at=None,
                    )
                )
        return reservation_id

    return _seed


@pytest_asyncio.fixture
async def client(session_factory, venue, locks, notifier):
    async def _get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_lane_locks] = lambda: locks
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as http:
            yield http
    finally:
        app.dependency_overrides.clear()
