"""Deterministic session progress and expiry computations.

Pure functions over the session model; no storage access.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from prd_discovery.domain.stages import STAGE_NAMES, STAGE_ORDER, DiscoveryStage, StageStatus
from prd_discovery.schemas.discovery import DiscoverySession


@dataclass
class StageSummary:
    name: str
    status: StageStatus
    score: int
    completed: bool


@dataclass
class SessionProgress:
    overall_progress: int = 0
    completed_stages: int = 0
    total_stages: int = len(STAGE_ORDER)
    stages: dict[DiscoveryStage, StageSummary] = field(default_factory=dict)


def compute_session_progress(session: DiscoverySession | None) -> SessionProgress:
    """Average completion score across all stages.

    Returns:
        SessionProgress; zeroed when there is no session

    Pure function -- deterministic, no side effects.
    """
    if session is None:
        return SessionProgress()

    total_score = 0
    completed = 0
    stages: dict[DiscoveryStage, StageSummary] = {}

    for stage in STAGE_ORDER:
        entry = session.progress[stage]
        total_score += entry.completion_score
        is_done = entry.status == StageStatus.COMPLETED
        if is_done:
            completed += 1
        stages[stage] = StageSummary(
            name=STAGE_NAMES[stage],
            status=entry.status,
            score=entry.completion_score,
            completed=is_done,
        )

    return SessionProgress(
        overall_progress=round(total_score / len(STAGE_ORDER)),
        completed_stages=completed,
        stages=stages,
    )


def is_session_expired(session: DiscoverySession, timeout_hours: int, now: datetime) -> bool:
    """True when the session is strictly older than the timeout."""
    return now - session.created > timedelta(hours=timeout_hours)


def format_session_summary(session: DiscoverySession | None) -> dict:
    """Display-oriented summary of a session."""
    if session is None:
        return {"message": "No active discovery session"}

    progress = compute_session_progress(session)
    return {
        "projectName": session.project_name,
        "sessionId": session.session_id,
        "status": session.status.value,
        "currentStage": STAGE_NAMES[session.stage],
        "overallProgress": progress.overall_progress,
        "completedStages": progress.completed_stages,
        "totalStages": progress.total_stages,
        "created": session.created.date().isoformat(),
        "lastUpdated": session.last_updated.date().isoformat(),
        "stageProgress": {
            stage.value: {
                "name": summary.name,
                "status": summary.status.value,
                "score": summary.score,
                "completed": summary.completed,
            }
            for stage, summary in progress.stages.items()
        },
    }
