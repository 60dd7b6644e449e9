"""Tests for session progress, expiry and summary formatting."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from prd_discovery.domain.progress import (
    compute_session_progress,
    format_session_summary,
    is_session_expired,
)
from prd_discovery.domain.stages import STAGE_ORDER, DiscoveryStage, SessionStatus, StageStatus
from prd_discovery.schemas.discovery import DiscoverySession, StageProgress

pytestmark = pytest.mark.unit

CREATED = datetime(2026, 1, 15, 9, 0, tzinfo=UTC)


def make_session(progress_overrides: dict | None = None) -> DiscoverySession:
    progress = {stage: StageProgress() for stage in STAGE_ORDER}
    progress.update(progress_overrides or {})
    return DiscoverySession(
        session_id=str(uuid.uuid4()),
        project_name="Demo Project",
        stage=DiscoveryStage.TECHNICAL_FEASIBILITY,
        status=SessionStatus.ACTIVE,
        progress=progress,
        created=CREATED,
        last_updated=CREATED + timedelta(hours=2),
    )


def completed(score: int) -> StageProgress:
    return StageProgress(
        status=StageStatus.COMPLETED,
        completion_score=score,
        started_at=CREATED,
        completed_at=CREATED + timedelta(hours=1),
    )


def test_progress_averages_all_five_stages():
    """Overall progress averages completion across all five stages."""
    session = make_session(
        {
            DiscoveryStage.PROBLEM_DISCOVERY: completed(90),
            DiscoveryStage.MARKET_RESEARCH: completed(85),
        }
    )
    progress = compute_session_progress(session)

    assert progress.overall_progress == 35
    assert progress.completed_stages == 2
    assert progress.total_stages == 5
    assert progress.stages[DiscoveryStage.MARKET_RESEARCH].name == "Market Research"
    assert progress.stages[DiscoveryStage.MARKET_RESEARCH].completed is True
    assert progress.stages[DiscoveryStage.PRD_GENERATION].status == StageStatus.NOT_STARTED


def test_progress_without_session_is_zeroed():
    """No session means zero progress."""
    progress = compute_session_progress(None)
    assert progress.overall_progress == 0
    assert progress.completed_stages == 0
    assert progress.total_stages == 5


class TestExpiry:
    """Test is_session_expired."""

    def test_exactly_at_timeout_is_not_expired(self):
        """A session exactly at the timeout is still live."""
        session = make_session()
        assert is_session_expired(session, 24, CREATED + timedelta(hours=24)) is False

    def test_past_timeout_is_expired(self):
        """One second past the timeout is expired."""
        session = make_session()
        assert is_session_expired(session, 24, CREATED + timedelta(hours=24, seconds=1)) is True

    def test_timeout_is_configurable(self):
        """The timeout comes from the caller."""
        session = make_session()
        assert is_session_expired(session, 1, CREATED + timedelta(hours=2)) is True


def test_summary_shape():
    """Summary carries display names and counts."""
    session = make_session({DiscoveryStage.PROBLEM_DISCOVERY: completed(100)})
    summary = format_session_summary(session)

    assert summary["projectName"] == "Demo Project"
    assert summary["sessionId"] == session.session_id
    assert summary["status"] == "active"
    assert summary["currentStage"] == "Technical Feasibility"
    assert summary["overallProgress"] == 20
    assert summary["completedStages"] == 1
    assert summary["totalStages"] == 5
    assert summary["created"] == "2026-01-15"
    assert summary["stageProgress"]["problem-discovery"] == {
        "name": "Problem Discovery",
        "status": "completed",
        "score": 100,
        "completed": True,
    }


def test_summary_without_session():
    """No session yields the placeholder message."""
    assert format_session_summary(None) == {"message": "No active discovery session"}
