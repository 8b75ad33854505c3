"""Named mutual-exclusion locks for settlement runs, play ingestion and cron jobs.

``RedisLockManager`` coordinates every worker process through Redis
(``SET NX EX``), which is what production uses. ``LocalLockManager`` keeps
``asyncio.Lock`` objects in memory and is enough for a single process and for
tests.
"""
import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable

import redis.asyncio as redis

logger = logging.getLogger(__name__)

LOCK_PREFIX = "edusettle:lock:"


class LockManager:
    """Interface: ``acquire`` / ``release`` plus the ``hold`` and ``hold_many`` helpers."""

    async def acquire(self, name: str, timeout: int = 300, wait: float = 0.0) -> bool:
        raise NotImplementedError

    async def release(self, name: str) -> None:
        raise NotImplementedError

    @asynccontextmanager
    async def hold(self, name: str, timeout: int = 300, wait: float = 0.0) -> AsyncIterator[bool]:
        """Yield whether the lock was acquired; release it on exit if it was."""
        acquired = await self.acquire(name, timeout=timeout, wait=wait)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(name)

    @asynccontextmanager
    async def hold_many(self, names: Iterable[str], timeout: int = 30, wait: float = 5.0) -> AsyncIterator[bool]:
        """Acquire several locks in sorted order so callers cannot deadlock each other."""
        held = []
        try:
            for name in sorted(set(names)):
                if not await self.acquire(name, timeout=timeout, wait=wait):
                    yield False
                    return
                held.append(name)
            yield True
        finally:
            for name in reversed(held):
                await self.release(name)


class LocalLockManager(LockManager):
    """In-process locks keyed by name.

    A lock object lives only while someone holds or waits for it, so the map
    stays as small as the set of keys currently in use.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._interest: Dict[str, int] = {}  # holders plus waiters per name

    def _checkout(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        self._interest[name] = self._interest.get(name, 0) + 1
        return lock

    def _checkin(self, name: str) -> None:
        remaining = self._interest.get(name, 0) - 1
        if remaining > 0:
            self._interest[name] = remaining
        else:
            self._interest.pop(name, None)
            self._locks.pop(name, None)

    async def acquire(self, name: str, timeout: int = 300, wait: float = 0.0) -> bool:
        lock = self._checkout(name)
        if wait <= 0:
            if lock.locked():
                self._checkin(name)
                return False
            await lock.acquire()
            return True
        try:
            await asyncio.wait_for(lock.acquire(), timeout=wait)
        except asyncio.TimeoutError:
            self._checkin(name)
            return False
        except asyncio.CancelledError:
            self._checkin(name)
            raise
        return True

    async def release(self, name: str) -> None:
        lock = self._locks.get(name)
        if lock is not None and lock.locked():
            lock.release()
            self._checkin(name)


class RedisLockManager(LockManager):
    """Distributed locks shared by every worker process."""

    POLL_INTERVAL = 0.05

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._client = None
        self._tokens: Dict[str, str] = {}

    async def get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    async def acquire(self, name: str, timeout: int = 300, wait: float = 0.0) -> bool:
        client = await self.get_client()
        token = secrets.token_hex(8)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait
        while True:
            # SET with NX (only set if not exists) and EX (expiry)
            if await client.set(f"{LOCK_PREFIX}{name}", token, nx=True, ex=timeout):
                self._tokens[name] = token
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.POLL_INTERVAL)

    async def release(self, name: str) -> None:
        token = self._tokens.pop(name, None)
        if token is None:
            return
        client = await self.get_client()
        key = f"{LOCK_PREFIX}{name}"
        # Only delete our own lock; it may have expired and been taken by someone else
        if await client.get(key) == token:
            await client.delete(key)
        else:
            logger.warning(f"Lock {name} expired before release")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
