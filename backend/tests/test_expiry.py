import asyncio
from contextlib import suppress
from datetime import timedelta

import pytest
from sqlalchemy import select

from backend.lanebook.db.schema import lane_hold
from backend.lanebook.services.expiry import run_hold_sweeper, sweep_expired_holds
from backend.lanebook.services.holds import create_hold
from backend.tests.constants import DAY, NOW, TEST_VENUE, hhmm


async def _hold(session_factory, locks, *, start, lanes, now):
    async with session_factory() as session:
        return await create_hold(
            session,
            locks,
            venue_id=TEST_VENUE.venue_id,
            booking_date=DAY,
            start_minute=hhmm(start),
            duration_minutes=60,
            lanes_requested=lanes,
            party_size=2,
            now=now,
        )


async def _tokens(session_factory) -> set[str]:
    async with session_factory() as session:
        return set((await session.execute(select(lane_hold.c.token))).scalars())


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_rows(session_factory, venue, locks):
    stale = await _hold(session_factory, locks, start="14:00", lanes=2, now=NOW)
    live = await _hold(session_factory, locks, start="16:00", lanes=1, now=NOW + timedelta(minutes=20))

    async with session_factory() as session:
        removed = await sweep_expired_holds(session, now=NOW + timedelta(minutes=31))

    assert removed == 2
    assert await _tokens(session_factory) == {live.token}
    assert stale.token not in await _tokens(session_factory)


@pytest.mark.asyncio
async def test_sweep_with_nothing_expired(session_factory, venue, locks):
    hold = await _hold(session_factory, locks, start="14:00", lanes=1, now=NOW)

    async with session_factory() as session:
        assert await sweep_expired_holds(session, now=NOW + timedelta(minutes=29)) == 0

    assert await _tokens(session_factory) == {hold.token}


@pytest.mark.asyncio
async def test_background_sweeper_runs_until_cancelled(session_factory, venue, locks):
    # Created against a past clock, so already expired for the sweeper's real clock.
    await _hold(session_factory, locks, start="14:00", lanes=1, now=NOW)

    task = asyncio.create_task(run_hold_sweeper(session_factory, interval_seconds=0.01))
    for _ in range(100):
        if not await _tokens(session_factory):
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task

    assert await _tokens(session_factory) == set()


@pytest.mark.asyncio
async def test_background_sweeper_survives_unexpected_errors(session_factory, venue, locks):
    await _hold(session_factory, locks, start="14:00", lanes=1, now=NOW)
    calls = 0

    def flaky_factory():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("bad session")
        return session_factory()

    task = asyncio.create_task(run_hold_sweeper(flaky_factory, interval_seconds=0.01))
    for _ in range(100):
        if calls > 1 and not await _tokens(session_factory):
            break
        await asyncio.sleep(0.01)

    assert not task.done()
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task

    assert calls > 1
    assert await _tokens(session_factory) == set()
