import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from backend.lanebook.core.errors import HoldExpired, HoldNotFound, ReservationNotFound, ReservationStateConflict
from backend.lanebook.services.cancellation import cancel_reservation
from backend.lanebook.services.expiry import sweep_expired_holds
from backend.lanebook.services.holds import create_hold, get_hold
from backend.lanebook.services.reservations import (
    CustomerDetails,
    commit_hold,
    confirm_payment,
    get_reservation,
    list_reservations_for_token,
    split_amount,
    split_count,
)
from backend.tests.constants import DAY, NOW, TEST_VENUE, hhmm


GUEST = CustomerDetails(name="Test Guest", email="guest@example.com", phone="+4930000000")


async def _hold(session_factory, locks, *, lanes=2, party_size=5, duration=60):
    async with session_factory() as session:
        return await create_hold(
            session,
            locks,
            venue_id=TEST_VENUE.venue_id,
            booking_date=DAY,
            start_minute=hhmm("19:00"),
            duration_minutes=duration,
            lanes_requested=lanes,
            party_size=party_size,
            notes="pytest",
            now=NOW,
        )


async def _commit(session_factory, locks, token, *, now, notifier=None, customer=GUEST):
    async with session_factory() as session:
        return await commit_hold(session, locks, token=token, customer=customer, now=now, notifier=notifier)


def test_split_amount_keeps_every_cent():
    assert split_amount(Decimal("10.00"), 3) == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]
    assert split_amount(Decimal("36.00"), 2) == [Decimal("18.00"), Decimal("18.00")]
    assert sum(split_amount(Decimal("0.05"), 4)) == Decimal("0.05")


def test_split_count():
    assert split_count(5, 2) == [3, 2]
    assert split_count(8, 8) == [1] * 8


@pytest.mark.asyncio
async def test_commit_creates_pending_reservations(session_factory, venue, locks, notifier):
    hold = await _hold(session_factory, locks)

    created = await _commit(session_factory, locks, hold.token, now=NOW + timedelta(minutes=10), notifier=notifier)

    assert [r.lane_id for r in created] == [1, 2]
    assert all(r.status == "pending" for r in created)
    assert all(r.start_minute == hhmm("19:00") and r.end_minute == hhmm("20:00") for r in created)
    assert sum(r.price for r in created) == hold.estimated_amount
    assert [r.party_size for r in created] == [3, 2]
    assert all(r.notes == "pytest" for r in created)
    assert notifier.created == [created]

    async with session_factory() as session:
        with pytest.raises(HoldNotFound):
            await get_hold(session, hold.token, now=NOW + timedelta(minutes=11))
        stored = await list_reservations_for_token(session, hold.token)
    assert [r.id for r in stored] == [r.id for r in created]


@pytest.mark.asyncio
async def test_commit_after_expiry(session_factory, venue, locks):
    hold = await _hold(session_factory, locks)

    with pytest.raises(HoldExpired):
        await _commit(session_factory, locks, hold.token, now=hold.expires_at + timedelta(seconds=1))

    async with session_factory() as session:
        assert await list_reservations_for_token(session, hold.token) == []


@pytest.mark.asyncio
async def test_commit_exactly_at_expiry_is_refused(session_factory, venue, locks):
    hold = await _hold(session_factory, locks)

    with pytest.raises(HoldExpired):
        await _commit(session_factory, locks, hold.token, now=hold.expires_at)


@pytest.mark.asyncio
async def test_commit_after_expired_hold_was_swept(session_factory, venue, locks):
    hold = await _hold(session_factory, locks)
    later = hold.expires_at + timedelta(seconds=1)

    async with session_factory() as session:
        assert await sweep_expired_holds(session, now=later) == 2

    with pytest.raises(HoldExpired):
        await _commit(session_factory, locks, hold.token, now=later)


@pytest.mark.asyncio
async def test_commit_after_expired_hold_was_purged_by_new_hold(session_factory, venue, locks):
    stale = await _hold(session_factory, locks)
    later = stale.expires_at + timedelta(minutes=1)

    async with session_factory() as session:
        fresh = await create_hold(
            session,
            locks,
            venue_id=TEST_VENUE.venue_id,
            booking_date=DAY,
            start_minute=hhmm("19:00"),
            duration_minutes=60,
            lanes_requested=2,
            party_size=2,
            now=later,
        )
    assert fresh.lane_ids == stale.lane_ids

    with pytest.raises(HoldExpired):
        await _commit(session_factory, locks, stale.token, now=later)

@pytest.mark.asyncio
async def test_double_commit_returns_same_reservations(session_factory, venue, locks, notifier):
    hold = await _hold(session_factory, locks)

    first = await _commit(session_factory, locks, hold.token, now=NOW + timedelta(minutes=1), notifier=notifier)
    second = await _commit(session_factory, locks, hold.token, now=NOW + timedelta(minutes=2), notifier=notifier)

    assert [r.id for r in second] == [r.id for r in first]
    assert len(notifier.created) == 1


@pytest.mark.asyncio
async def test_concurrent_commits_create_one_set(session_factory, venue, locks):
    hold = await _hold(session_factory, locks, lanes=3)
    now = NOW + timedelta(minutes=3)

    first, second = await asyncio.gather(
        _commit(session_factory, locks, hold.token, now=now),
        _commit(session_factory, locks, hold.token, now=now),
    )

    assert sorted(r.id for r in first) == sorted(r.id for r in second)
    async with session_factory() as session:
        assert len(await list_reservations_for_token(session, hold.token)) == 3


@pytest.mark.asyncio
async def test_replay_after_hold_lifetime_is_not_found(session_factory, venue, locks):
    hold = await _hold(session_factory, locks)
    await _commit(session_factory, locks, hold.token, now=NOW + timedelta(minutes=1))

    with pytest.raises(HoldNotFound):
        await _commit(session_factory, locks, hold.token, now=hold.expires_at + timedelta(seconds=1))


@pytest.mark.asyncio
async def test_commit_unknown_token_is_expired(session_factory, venue, locks):
    with pytest.raises(HoldExpired):
        await _commit(session_factory, locks, "no-such-token", now=NOW)


@pytest.mark.asyncio
async def test_notifier_failure_keeps_reservations(session_factory, venue, locks):
    class BrokenNotifier:
        async def reservations_created(self, reservations):
            raise RuntimeError("smtp down")

        async def reservation_cancelled(self, booking):
            raise RuntimeError("smtp down")

    hold = await _hold(session_factory, locks, lanes=1)
    created = await _commit(
        session_factory, locks, hold.token, now=NOW + timedelta(minutes=1), notifier=BrokenNotifier()
    )

    async with session_factory() as session:
        stored = await get_reservation(session, created[0].id)
    assert stored.status == "pending"

    async with session_factory() as session:
        cancelled = await cancel_reservation(
            session, created[0].id, now=NOW + timedelta(minutes=2), notifier=BrokenNotifier()
        )
    assert cancelled.status == "cancelled"


@pytest.mark.asyncio
async def test_confirm_payment(session_factory, venue, locks):
    hold = await _hold(session_factory, locks, lanes=1)
    (booking,) = await _commit(session_factory, locks, hold.token, now=NOW + timedelta(minutes=1))

    async with session_factory() as session:
        confirmed = await confirm_payment(session, booking.id, payment_ref="pay_123")
    assert confirmed.status == "confirmed"
    assert confirmed.payment_ref == "pay_123"

    async with session_factory() as session:
        again = await confirm_payment(session, booking.id, payment_ref="pay_123")
    assert again.status == "confirmed"

    async with session_factory() as session:
        with pytest.raises(ReservationStateConflict):
            await confirm_payment(session, booking.id, payment_ref="pay_other")


@pytest.mark.asyncio
async def test_confirm_payment_on_cancelled(session_factory, venue, seed_reservation):
    reservation_id = await seed_reservation(2, hhmm("15:00"), hhmm("16:00"), status="cancelled")

    async with session_factory() as session:
        with pytest.raises(ReservationStateConflict):
            await confirm_payment(session, reservation_id, payment_ref="pay_123")


@pytest.mark.asyncio
async def test_unknown_reservation(session_factory, venue):
    async with session_factory() as session:
        with pytest.raises(ReservationNotFound):
            await get_reservation(session, "00000000-0000-0000-0000-000000000000")
        with pytest.raises(ReservationNotFound):
            await confirm_payment(session, "00000000-0000-0000-0000-000000000000", payment_ref="pay_123")
