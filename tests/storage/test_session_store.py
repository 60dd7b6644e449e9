"""Tests for SessionStore over the memory, file and Redis backends."""

import json
import uuid
from datetime import UTC, datetime

import pytest
from fakeredis import FakeAsyncRedis

from prd_discovery.core.config import Settings
from prd_discovery.core.exceptions import ConcurrentModificationError, DiscoveryValidationError
from prd_discovery.domain.stages import STAGE_ORDER, DiscoveryStage, SessionStatus, StageStatus
from prd_discovery.schemas.discovery import DiscoverySession, ExtendedState, StageProgress
from prd_discovery.storage.backends import (
    FileStateBackend,
    MemoryStateBackend,
    RedisStateBackend,
    StateBackend,
    build_backend,
)
from prd_discovery.storage.store import SessionStore

pytestmark = pytest.mark.unit

PROJECT = "shop"
NOW = datetime(2026, 1, 15, 9, 0, tzinfo=UTC)


def make_session() -> DiscoverySession:
    progress = {stage: StageProgress() for stage in STAGE_ORDER}
    progress[DiscoveryStage.PROBLEM_DISCOVERY] = StageProgress(status=StageStatus.IN_PROGRESS, started_at=NOW)
    return DiscoverySession(
        session_id=str(uuid.uuid4()),
        project_name="Shop",
        stage=DiscoveryStage.PROBLEM_DISCOVERY,
        status=SessionStatus.ACTIVE,
        progress=progress,
        created=NOW,
        last_updated=NOW,
    )


@pytest.fixture
async def redis():
    """Provide fakeredis async client."""
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture(params=["memory", "file", "redis"])
def any_backend(request, tmp_path, redis) -> StateBackend:
    if request.param == "memory":
        return MemoryStateBackend()
    if request.param == "file":
        return FileStateBackend(tmp_path)
    return RedisStateBackend(redis)


class TestLoad:
    """Test SessionStore.load_state."""

    async def test_missing_document_is_default(self, any_backend):
        """A missing document loads as the default state."""
        state = await SessionStore(any_backend, PROJECT).load_state()
        assert state == ExtendedState()

    async def test_unparsable_document_is_default(self, any_backend):
        """Unparsable JSON loads as the default state."""
        await any_backend.write(PROJECT, "{not json")
        state = await SessionStore(any_backend, PROJECT).load_state()
        assert state.discovery_session is None
        assert state.version == 0

    async def test_schema_invalid_document_is_default(self, any_backend):
        """A schema-invalid document loads as the default state."""
        await any_backend.write(PROJECT, json.dumps({"discoverySession": {"sessionId": "nope"}}))
        assert await SessionStore(any_backend, PROJECT).load_session() is None


class TestSave:
    """Test SessionStore.save_state."""

    async def test_round_trip(self, any_backend):
        """A saved session loads back equal."""
        store = SessionStore(any_backend, PROJECT)
        session = make_session()

        stored = await store.save_state(ExtendedState(discovery_session=session))
        loaded = await store.load_session()

        assert stored.version == 1
        assert loaded == session
        assert loaded.created == NOW

    async def test_version_increments(self, any_backend):
        """Each save bumps the version."""
        store = SessionStore(any_backend, PROJECT)
        first = await store.save_state(ExtendedState())
        second = await store.save_state(first, expected_version=first.version)
        assert second.version == 2

    async def test_stale_version_is_rejected(self, any_backend):
        """Saving against a stale version raises."""
        store = SessionStore(any_backend, PROJECT)
        loaded = await store.load_state()
        await store.save_state(loaded, expected_version=0)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await store.save_state(loaded, expected_version=0)
        assert exc_info.value.code == "concurrent-modification"
        assert exc_info.value.actual_version == 1

    async def test_sibling_state_is_preserved(self, any_backend):
        """Keys outside the session survive a save."""
        await any_backend.write(PROJECT, json.dumps({"currentTag": "feature-x", "tasksCache": {"count": 3}}))
        store = SessionStore(any_backend, PROJECT)

        state = await store.load_state()
        state.discovery_session = make_session()
        await store.save_state(state, expected_version=state.version)

        document = json.loads(await any_backend.read(PROJECT))
        assert document["currentTag"] == "feature-x"
        assert document["tasksCache"] == {"count": 3}
        assert document["discoverySession"]["projectName"] == "Shop"

    async def test_invalid_state_is_never_written(self, any_backend):
        """Invalid state is rejected before writing."""
        store = SessionStore(any_backend, PROJECT)
        session = make_session()
        # completed without completedAt
        session.progress[DiscoveryStage.PROBLEM_DISCOVERY].status = StageStatus.COMPLETED

        with pytest.raises(DiscoveryValidationError):
            await store.save_state(ExtendedState(discovery_session=session))
        assert await any_backend.read(PROJECT) is None


class TestFileBackend:
    """Test FileStateBackend."""

    async def test_document_location(self, tmp_path):
        """Documents live under the project's .taskmaster directory."""
        backend = FileStateBackend(tmp_path, ".taskmaster", "state.json")
        await SessionStore(backend, PROJECT).save_state(ExtendedState())

        path = tmp_path / PROJECT / ".taskmaster" / "state.json"
        assert backend.path_for(PROJECT) == path
        assert json.loads(path.read_text())["version"] == 1
        assert path.with_suffix(".json.lock").exists()
        assert [p.name for p in path.parent.iterdir() if p.name.endswith(".tmp")] == []


class TestBuildBackend:
    """Test build_backend."""

    def test_memory(self, tmp_path):
        """memory selects MemoryStateBackend."""
        settings = Settings(_env_file=None, storage_backend="memory")
        assert isinstance(build_backend(settings), MemoryStateBackend)

    def test_file(self, tmp_path):
        """file selects FileStateBackend under state_root."""
        settings = Settings(_env_file=None, storage_backend="file", state_root=tmp_path)
        backend = build_backend(settings)
        assert isinstance(backend, FileStateBackend)
        assert backend.path_for("p") == tmp_path / "p" / ".taskmaster" / "state.json"

    async def test_redis_uses_given_client(self, redis):
        """redis wraps the given client."""
        settings = Settings(_env_file=None, storage_backend="redis", redis_key_prefix="test:state:")
        backend = build_backend(settings, redis)
        assert isinstance(backend, RedisStateBackend)

        await backend.write("p", "{}")
        assert await redis.get("test:state:p") == "{}"
