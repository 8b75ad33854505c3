"""Tests for the in-process lock manager."""
import asyncio

import pytest

from app.services.locks import LocalLockManager


@pytest.fixture
def locks():
    return LocalLockManager()


@pytest.mark.asyncio
async def test_second_acquire_fails_without_wait(locks):
    assert await locks.acquire("settlement:2025-03") is True
    assert await locks.acquire("settlement:2025-03") is False

    await locks.release("settlement:2025-03")

    assert await locks.acquire("settlement:2025-03") is True


@pytest.mark.asyncio
async def test_released_locks_are_forgotten(locks):
    for i in range(100):
        async with locks.hold_many([f"play:user-{i}:media-1", f"play-ip:10.0.0.{i}"], wait=1.0) as acquired:
            assert acquired

    assert locks._locks == {}
    assert locks._interest == {}


@pytest.mark.asyncio
async def test_failed_acquire_leaves_nothing_behind(locks):
    await locks.acquire("busy")

    assert await locks.acquire("busy", wait=0.01) is False
    assert await locks.acquire("busy") is False
    await locks.release("busy")

    assert locks._locks == {}


@pytest.mark.asyncio
async def test_waiter_takes_over_then_lock_is_dropped(locks):
    await locks.acquire("job")
    waiter = asyncio.create_task(locks.acquire("job", wait=1.0))
    await asyncio.sleep(0)

    await locks.release("job")
    assert await waiter is True
    assert "job" in locks._locks

    await locks.release("job")
    assert locks._locks == {}
