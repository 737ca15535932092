"""Per-lane mutual exclusion for interval writes.

A key covers one lane of one venue on one date, so holds on different lanes
or different days never contend. Keys are always taken in sorted order to
keep concurrent multi-lane requests from deadlocking each other.

The whole day of a lane is one key, so two holds on the same lane at 13:00
and 20:00 still wait on each other.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import date
from typing import Protocol
from uuid import uuid4

import redis.asyncio as redis
from loguru import logger
from redis.exceptions import RedisError

from backend.lanebook.core import redis_client as redis_module
from backend.lanebook.core.config import settings
from backend.lanebook.core.errors import StoreUnavailable


RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""

POLL_INTERVAL_SECONDS = 0.05


def lane_lock_key(venue_id: str, lane_id: int, booking_date: date) -> str:
    return f"lock:lane:{venue_id}:{booking_date.isoformat()}:{lane_id}"


class LaneLocks(Protocol):
    def acquire(self, keys: Iterable[str]) -> AbstractAsyncContextManager[None]: ...


class LocalLaneLocks:
    """asyncio locks keyed by lane; only correct inside a single process.

    A key's lock lives only while some request holds or waits for it.
    """

    def __init__(self, wait_seconds: float | None = None) -> None:
        self.wait_seconds = settings.LANE_LOCK_WAIT_SECONDS if wait_seconds is None else wait_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    @property
    def active_keys(self) -> list[str]:
        return sorted(self._locks)

    def _enter(self, key: str) -> asyncio.Lock:
        self._users[key] += 1
        return self._locks.setdefault(key, asyncio.Lock())

    def _leave(self, key: str) -> None:
        self._users[key] -= 1
        if self._users[key] <= 0:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def acquire(self, keys: Iterable[str]) -> AsyncIterator[None]:
        entered: list[str] = []
        held: list[asyncio.Lock] = []
        try:
            for key in sorted(set(keys)):
                lock = self._enter(key)
                entered.append(key)
                try:
                    await asyncio.wait_for(lock.acquire(), timeout=self.wait_seconds)
                except asyncio.TimeoutError as exc:
                    logger.warning("Timed out waiting for lane lock {}", key)
                    raise StoreUnavailable(f"Timed out waiting for lock {key}") from exc
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()
            for key in entered:
                self._leave(key)


class RedisLaneLocks:
    """SET NX PX locks with an ownership-checked release."""

    def __init__(
        self,
        client: redis.Redis | None = None,
        *,
        ttl_ms: int | None = None,
        wait_seconds: float | None = None,
    ) -> None:
        self._client = client
        self.ttl_ms = settings.LANE_LOCK_TTL_MS if ttl_ms is None else ttl_ms
        self.wait_seconds = settings.LANE_LOCK_WAIT_SECONDS if wait_seconds is None else wait_seconds

    @property
    def client(self) -> redis.Redis:
        client = self._client or redis_module.redis_client
        if client is None:
            raise StoreUnavailable("Redis unavailable")
        return client

    async def _take(self, key: str, owner: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_seconds
        while True:
            if await self.client.set(key, owner, nx=True, px=self.ttl_ms):
                return
            if loop.time() >= deadline:
                logger.warning("Timed out waiting for lane lock {}", key)
                raise StoreUnavailable(f"Timed out waiting for lock {key}")
            await asyncio.sleep(POLL_INTERVAL_SECONDS)

    @asynccontextmanager
    async def acquire(self, keys: Iterable[str]) -> AsyncIterator[None]:
        owner = str(uuid4())
        held: list[str] = []
        try:
            for key in sorted(set(keys)):
                try:
                    await self._take(key, owner)
                except RedisError as exc:
                    raise StoreUnavailable("Redis unavailable") from exc
                held.append(key)
            yield
        finally:
            for key in reversed(held):
                try:
                    released = await self.client.eval(RELEASE_SCRIPT, 1, key, owner)
                except RedisError as exc:
                    # The TTL still frees the key; nothing to undo in the store.
                    logger.error("Failed to release lane lock {}: {}", key, exc)
                    continue
                if not released:
                    logger.warning("Lane lock {} expired before release", key)


lane_locks: LaneLocks | None = None


def init_lane_locks() -> LaneLocks:
    global lane_locks
    if settings.LANE_LOCK_BACKEND == "redis":
        lane_locks = RedisLaneLocks()
    elif settings.LANE_LOCK_BACKEND == "local":
        lane_locks = LocalLaneLocks()
    else:
        raise RuntimeError(f"Unknown LANE_LOCK_BACKEND {settings.LANE_LOCK_BACKEND!r}")
    return lane_locks


def get_lane_locks() -> LaneLocks:
    """FastAPI dependency returning the process-wide lock registry."""
    if lane_locks is None:
        return init_lane_locks()
    return lane_locks
