"""Storage backends for the per-project state document.

Each backend stores one opaque JSON string per project and offers an
exclusive ``locked(project_id)`` section. Writes always replace the whole
document.
"""

import asyncio
import fcntl
import os
import tempfile
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import IO, AsyncContextManager, Protocol, runtime_checkable

import redis.asyncio as redis

from prd_discovery.core.config import Settings
from prd_discovery.core.locking import ProjectLocks, RedisProjectLock

_LOCK_SUFFIX = ".lock"


@runtime_checkable
class StateBackend(Protocol):
    """Whole-document storage keyed by project id."""

    async def read(self, project_id: str) -> str | None:
        """Return the stored document, or None when nothing is stored."""
        ...

    async def write(self, project_id: str, content: str) -> None:
        """Replace the stored document."""
        ...

    def locked(self, project_id: str) -> AsyncContextManager[None]:
        """Exclusive section for read-compare-write on one project."""
        ...


class MemoryStateBackend:
    """In-process backend for tests and single-process tools."""

    def __init__(self) -> None:
        self.documents: dict[str, str] = {}
        self._locks = ProjectLocks()

    async def read(self, project_id: str) -> str | None:
        return self.documents.get(project_id)

    async def write(self, project_id: str, content: str) -> None:
        self.documents[project_id] = content

    def locked(self, project_id: str) -> AsyncContextManager[None]:
        return self._locks.hold(project_id)


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to ``path`` via a temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _read_text(path: Path) -> str | None:
    if not path.is_file():
        return None
    return path.read_text(encoding="utf-8", errors="replace")


def _open_and_lock(lock_path: Path) -> IO[str]:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    handle = lock_path.open("a+", encoding="utf-8")
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
    except BaseException:
        handle.close()
        raise
    return handle


def _unlock_and_close(handle: IO[str]) -> None:
    try:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()


class FileStateBackend:
    """JSON document at ``<root>/<project_id>/<state_dir>/<filename>``.

    A ``.lock`` sidecar carries the flock so the data file itself can be
    atomically replaced.
    """

    def __init__(self, root: Path, state_dir: str = ".taskmaster", filename: str = "state.json"):
        self.root = Path(root)
        self.state_dir = state_dir
        self.filename = filename
        self._locks = ProjectLocks()

    def path_for(self, project_id: str) -> Path:
        return self.root / project_id / self.state_dir / self.filename

    async def read(self, project_id: str) -> str | None:
        return await asyncio.to_thread(_read_text, self.path_for(project_id))

    async def write(self, project_id: str, content: str) -> None:
        await asyncio.to_thread(atomic_write_text, self.path_for(project_id), content)

    @asynccontextmanager
    async def locked(self, project_id: str) -> AsyncGenerator[None, None]:
        path = self.path_for(project_id)
        lock_path = path.with_suffix(path.suffix + _LOCK_SUFFIX)
        async with self._locks.hold(project_id):
            handle = await asyncio.to_thread(_open_and_lock, lock_path)
            try:
                yield
            finally:
                await asyncio.to_thread(_unlock_and_close, handle)


class RedisStateBackend:
    """One Redis string key per project, guarded by a Redis project lock."""

    def __init__(self, client: redis.Redis, key_prefix: str = "discovery:state:", lock: RedisProjectLock | None = None):
        self._redis = client
        self.key_prefix = key_prefix
        self._lock = lock or RedisProjectLock(client)

    def _key(self, project_id: str) -> str:
        return f"{self.key_prefix}{project_id}"

    async def read(self, project_id: str) -> str | None:
        return await self._redis.get(self._key(project_id))

    async def write(self, project_id: str, content: str) -> None:
        await self._redis.set(self._key(project_id), content)

    def locked(self, project_id: str) -> AsyncContextManager[None]:
        return self._lock.lock(project_id)


def build_backend(settings: Settings, redis_client: redis.Redis | None = None) -> StateBackend:
    """Create the storage backend named by ``settings.storage_backend``."""
    if settings.storage_backend == "memory":
        return MemoryStateBackend()

    if settings.storage_backend == "redis":
        client = redis_client or redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        lock = RedisProjectLock(client, ttl=settings.lock_ttl_seconds, wait_timeout=settings.lock_wait_seconds)
        return RedisStateBackend(client, settings.redis_key_prefix, lock)

    return FileStateBackend(settings.state_root, settings.state_dir, settings.state_filename)
