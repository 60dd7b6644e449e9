"""Tests for in-process and Redis project locks."""

import asyncio

import pytest
from fakeredis import FakeAsyncRedis

from prd_discovery.core.exceptions import LockTimeoutError
from prd_discovery.core.locking import ProjectLocks, RedisProjectLock

pytestmark = pytest.mark.unit


@pytest.fixture
async def redis():
    """Provide fakeredis async client."""
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.aclose()


async def test_project_locks_are_per_project():
    """Each project id gets its own lock."""
    locks = ProjectLocks()
    assert locks.get("a") is locks.get("a")
    assert locks.get("a") is not locks.get("b")


async def test_hold_serializes_critical_sections():
    """Critical sections for one project never interleave."""
    locks = ProjectLocks()
    order: list[str] = []

    async def worker(name: str):
        async with locks.hold("shop"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))
    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


async def test_acquire_and_release(redis):
    """The owner can acquire and release the Redis lock."""
    lock = RedisProjectLock(redis, ttl=30)

    assert await lock.acquire("shop", "owner-1") is True
    assert await lock.acquire("shop", "owner-2") is False
    assert await redis.ttl("discovery:lock:shop") > 0

    assert await lock.release("shop", "owner-2") is False
    assert await lock.release("shop", "owner-1") is True
    assert await redis.get("discovery:lock:shop") is None


async def test_reacquire_by_owner_extends(redis):
    """Re-acquiring by the owner extends the lock."""
    lock = RedisProjectLock(redis)
    assert await lock.acquire("shop", "owner-1") is True
    assert await lock.acquire("shop", "owner-1") is True


async def test_lock_context_releases(redis):
    """The context manager releases on exit."""
    lock = RedisProjectLock(redis)
    async with lock.lock("shop"):
        assert await redis.get("discovery:lock:shop") is not None
    assert await redis.get("discovery:lock:shop") is None


async def test_lock_times_out_when_held(redis):
    """A held lock raises LockTimeoutError after the wait."""
    lock = RedisProjectLock(redis, wait_timeout=0.1)
    await lock.acquire("shop", "someone-else")

    with pytest.raises(LockTimeoutError) as exc_info:
        async with lock.lock("shop"):
            pass
    assert exc_info.value.code == "lock-timeout"
