"""Per-project mutual exclusion around session read-modify-write.

This module provides:
- In-process asyncio locks keyed by project id
- A Redis lock for deployments where several processes share one store
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from uuid import uuid4

import redis.asyncio as redis
import structlog

from prd_discovery.core.exceptions import LockTimeoutError

logger = structlog.get_logger(__name__)


class ProjectLocks:
    """Registry of asyncio locks, one per project id."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, project_id: str) -> asyncio.Lock:
        lock = self._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, project_id: str) -> AsyncGenerator[None, None]:
        async with self.get(project_id):
            yield


class RedisProjectLock:
    """Manages distributed per-project locks using Redis."""

    LOCK_PREFIX = "discovery:lock:"
    DEFAULT_TTL = 30
    POLL_INTERVAL = 0.05

    def __init__(self, client: redis.Redis, ttl: int | None = None, wait_timeout: float = 10):
        self._redis = client
        self.ttl = ttl or self.DEFAULT_TTL
        self.wait_timeout = wait_timeout

    def _lock_key(self, project_id: str) -> str:
        return f"{self.LOCK_PREFIX}{project_id}"

    async def acquire(self, project_id: str, owner: str) -> bool:
        """Attempt to acquire the project lock once.

        Args:
            project_id: Project identifier
            owner: Identifier of the lock owner

        Returns:
            True if lock acquired, False if held by another owner
        """
        key = self._lock_key(project_id)
        lock_value = f"{owner}:{datetime.now(UTC).isoformat()}"
        result = await self._redis.set(key, lock_value, nx=True, ex=self.ttl)
        if result:
            return True

        current = await self._redis.get(key)
        if current and current.startswith(f"{owner}:"):
            await self._redis.expire(key, self.ttl)
            return True

        return False

    async def release(self, project_id: str, owner: str) -> bool:
        """Release the project lock if it is still owned by ``owner``."""
        key = self._lock_key(project_id)
        current = await self._redis.get(key)
        if current and current.startswith(f"{owner}:"):
            await self._redis.delete(key)
            return True
        return False

    @asynccontextmanager
    async def lock(self, project_id: str) -> AsyncGenerator[None, None]:
        """Hold the project lock, waiting up to ``wait_timeout`` seconds.

        Raises:
            LockTimeoutError: If the lock could not be acquired in time
        """
        owner = uuid4().hex
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_timeout
        while not await self.acquire(project_id, owner):
            if loop.time() >= deadline:
                logger.warning("project_lock_timeout", project_id=project_id, waited=self.wait_timeout)
                raise LockTimeoutError(project_id, self.wait_timeout)
            await asyncio.sleep(self.POLL_INTERVAL)

        try:
            yield
        finally:
            released = await self.release(project_id, owner)
            if not released:
                logger.warning("project_lock_lost", project_id=project_id, owner=owner)
