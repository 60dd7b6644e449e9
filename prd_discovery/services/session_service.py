"""DiscoverySessionService: the session state machine over a SessionStore.

Every mutating method is one read-modify-write of the project's state
document, serialized per project in-process and checked against the stored
version on save.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from prd_discovery.core.config import Settings, get_settings
from prd_discovery.core.exceptions import (
    DiscoveryValidationError,
    InvalidStageError,
    SessionClosedError,
    SessionExistsError,
    SessionExpiredError,
    SessionNotFoundError,
    StageNotReadyError,
)
from prd_discovery.core.locking import ProjectLocks
from prd_discovery.domain.progress import format_session_summary, is_session_expired
from prd_discovery.domain.stage_checks import StageReview, review_stage_data
from prd_discovery.domain.stages import (
    FIRST_STAGE,
    STAGE_ORDER,
    TERMINAL_STATUSES,
    DiscoveryStage,
    SessionStatus,
    StageStatus,
    StageValidationResult,
    next_stage,
    parse_stage,
    validate_stage_completion,
)
from prd_discovery.schemas.discovery import (
    DiscoverySession,
    ExtendedState,
    ResearchQuery,
    StageProgress,
    normalize_stage_data,
    validation_error_fields,
)
from prd_discovery.schemas.quality import QualityAssessment
from prd_discovery.storage.store import SessionStore

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]
Mutation = Callable[[DiscoverySession, datetime], None]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class StageCompletion:
    """Result of completing a stage."""

    session: DiscoverySession
    next_stage: DiscoveryStage | None
    review: StageReview = field(default_factory=StageReview)


class DiscoverySessionService:
    """Stage-gated discovery session lifecycle for one project.

    Lifecycle:
    - create_session starts at problem-discovery, status active
    - complete_stage is the only forward transition and the only way a
      session reaches completed
    - cancel_session is terminal; pause_session/resume_session toggle paused
    - expiry is checked at call time, never stored
    """

    def __init__(
        self,
        store: SessionStore,
        settings: Settings | None = None,
        clock: Clock | None = None,
        locks: ProjectLocks | None = None,
    ):
        """Initialize with dependency-injected store and clock.

        Args:
            store: Repository for this project's state document
            settings: Timeout configuration (defaults to get_settings())
            clock: Returns the current aware datetime (defaults to UTC now)
            locks: Shared per-project lock registry
        """
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or utc_now
        self._locks = locks or ProjectLocks()

    @property
    def project_id(self) -> str:
        return self.store.project_id

    def _now(self) -> datetime:
        return self.clock()

    def _expired(self, session: DiscoverySession, now: datetime) -> bool:
        return is_session_expired(session, self.settings.session_timeout_hours, now)

    @staticmethod
    def _require_stage(stage: str | DiscoveryStage) -> DiscoveryStage:
        parsed = parse_stage(stage)
        if parsed is None:
            raise InvalidStageError(str(stage))
        return parsed

    @staticmethod
    def _find(state: ExtendedState, session_id: str) -> DiscoverySession:
        session = state.discovery_session
        if session is None or session.session_id != session_id:
            raise SessionNotFoundError(session_id)
        return session

    def _require_open(self, session: DiscoverySession, now: datetime) -> None:
        if self._expired(session, now):
            raise SessionExpiredError(session.session_id, self.settings.session_timeout_hours)
        if session.status != SessionStatus.ACTIVE:
            raise SessionClosedError(session.session_id, session.status.value)

    async def _mutate(
        self,
        session_id: str,
        mutation: Mutation,
        *,
        require_open: bool = True,
    ) -> DiscoverySession:
        """Load, check, apply ``mutation``, stamp lastUpdated and save."""
        async with self._locks.hold(self.project_id):
            state = await self.store.load_state()
            session = self._find(state, session_id)
            now = self._now()
            if require_open:
                self._require_open(session, now)

            mutation(session, now)
            session.last_updated = now
            state.discovery_session = session

            stored = await self.store.save_state(state, expected_version=state.version)
            return stored.discovery_session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_session(
        self,
        project_name: str,
        preferences: dict[str, Any] | None = None,
    ) -> DiscoverySession:
        """Start a new session, replacing any closed or expired one.

        Raises:
            SessionExistsError: an active or paused, unexpired session exists
            DiscoveryValidationError: invalid project name or preferences
        """
        preferences = dict(preferences or {})

        async with self._locks.hold(self.project_id):
            state = await self.store.load_state()
            now = self._now()

            existing = state.discovery_session
            if (
                existing is not None
                and existing.status in (SessionStatus.ACTIVE, SessionStatus.PAUSED)
                and not self._expired(existing, now)
            ):
                raise SessionExistsError(existing.session_id)

            progress = {stage: StageProgress() for stage in STAGE_ORDER}
            progress[FIRST_STAGE] = StageProgress(status=StageStatus.IN_PROGRESS, started_at=now)

            try:
                session = DiscoverySession.model_validate(
                    {
                        "sessionId": str(uuid.uuid4()),
                        "projectName": project_name,
                        "stage": FIRST_STAGE,
                        "status": SessionStatus.ACTIVE,
                        "progress": progress,
                        "created": now,
                        "lastUpdated": now,
                        "metadata": {
                            "userPreferences": preferences,
                            "techStackPreferences": preferences.get("techStack") or [],
                            "inspirationReferences": preferences.get("references") or [],
                            "constraints": preferences.get("constraints") or [],
                        },
                    }
                )
            except ValidationError as e:
                fields = validation_error_fields(e)
                raise DiscoveryValidationError(f"Invalid session: {', '.join(fields)}", fields) from e

            state.discovery_session = session
            state.last_switched = now
            stored = await self.store.save_state(state, expected_version=state.version)

        with structlog.contextvars.bound_contextvars(session_id=session.session_id, project_id=self.project_id):
            if existing is not None:
                logger.info("session_replaced", previous_session_id=existing.session_id, previous_status=existing.status.value)
            logger.info("session_created", project_name=project_name)
        return stored.discovery_session

    async def resume_session(self, session_id: str) -> DiscoverySession:
        """Reactivate a session.

        Raises:
            SessionNotFoundError: no session with this id
            SessionExpiredError: older than the timeout
            SessionClosedError: completed or cancelled
        """

        def resume(session: DiscoverySession, now: datetime) -> None:
            if self._expired(session, now):
                raise SessionExpiredError(session.session_id, self.settings.session_timeout_hours)
            if session.status in TERMINAL_STATUSES:
                raise SessionClosedError(session.session_id, session.status.value)
            session.status = SessionStatus.ACTIVE

        session = await self._mutate(session_id, resume, require_open=False)
        logger.info("session_resumed", session_id=session_id, stage=session.stage.value)
        return session

    async def pause_session(self, session_id: str) -> DiscoverySession:
        def pause(session: DiscoverySession, now: datetime) -> None:
            if self._expired(session, now):
                raise SessionExpiredError(session.session_id, self.settings.session_timeout_hours)
            if session.status in TERMINAL_STATUSES:
                raise SessionClosedError(session.session_id, session.status.value)
            session.status = SessionStatus.PAUSED

        session = await self._mutate(session_id, pause, require_open=False)
        logger.info("session_paused", session_id=session_id)
        return session

    async def cancel_session(self, session_id: str) -> DiscoverySession:
        """Cancel a session. Expired sessions may be cancelled; terminal ones may not."""

        def cancel(session: DiscoverySession, now: datetime) -> None:
            if session.status in TERMINAL_STATUSES:
                raise SessionClosedError(session.session_id, session.status.value)
            session.status = SessionStatus.CANCELLED

        session = await self._mutate(session_id, cancel, require_open=False)
        logger.info("session_cancelled", session_id=session_id)
        return session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_current_session(self) -> DiscoverySession | None:
        return await self.store.load_session()

    async def get_session(self, session_id: str) -> DiscoverySession | None:
        session = await self.store.load_session()
        if session is None or session.session_id != session_id:
            return None
        return session

    async def get_progress_summary(self, session_id: str) -> dict:
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return format_session_summary(session)

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    async def update_session_stage(
        self,
        session_id: str,
        stage: str | DiscoveryStage,
        partial_data: dict[str, Any] | None = None,
    ) -> DiscoverySession:
        """Shallow-merge ``partial_data`` into a stage and make it current.

        Keys in ``partial_data`` replace stored keys of the same name; other
        stored keys are kept. A not-started stage becomes in-progress;
        completed and skipped stages keep their status.

        Raises:
            InvalidStageError: stage is not canonical
            SessionNotFoundError: no session with this id
            DiscoveryValidationError: payload fails the stage schema
        """
        target = self._require_stage(stage)
        normalized = normalize_stage_data(target, partial_data or {})

        def update(session: DiscoverySession, now: datetime) -> None:
            entry = session.progress[target]
            entry.data = {**entry.data, **normalized}
            if entry.status == StageStatus.NOT_STARTED:
                entry.status = StageStatus.IN_PROGRESS
            if entry.started_at is None:
                entry.started_at = now
            session.stage = target

        session = await self._mutate(session_id, update)
        logger.info(
            "stage_updated",
            session_id=session_id,
            stage=target.value,
            fields=sorted(normalized),
        )
        return session

    async def complete_stage(
        self,
        session_id: str,
        stage: str | DiscoveryStage,
        final_data: dict[str, Any] | None = None,
        completion_score: int = 100,
        *,
        require_valid: bool = False,
    ) -> StageCompletion:
        """Complete a stage and advance to its successor.

        Args:
            session_id: Session to mutate
            stage: Stage being completed; a not-started stage is started and completed at once
            final_data: Merged into the stage data like update_session_stage
            completion_score: Recorded score, 0-100
            require_valid: Reject when the merged data fails validate_stage_completion

        Returns:
            StageCompletion with the saved session, the next stage (None after the
            last) and an advisory content review of the completed stage data

        Raises:
            InvalidStageError, SessionNotFoundError, SessionExpiredError, SessionClosedError
            StageNotReadyError: stage is already completed
            DiscoveryValidationError: bad score, bad payload, or missing required fields
        """
        target = self._require_stage(stage)
        if not 0 <= completion_score <= 100:
            raise DiscoveryValidationError(
                f"completionScore must be between 0 and 100, got {completion_score}", ["completionScore"]
            )
        normalized = normalize_stage_data(target, final_data or {})
        successor = next_stage(target)

        def complete(session: DiscoverySession, now: datetime) -> None:
            entry = session.progress[target]
            if entry.status == StageStatus.COMPLETED:
                raise StageNotReadyError(target.value, entry.status.value, f"Stage {target.value} is already completed")

            merged = {**entry.data, **normalized}
            if require_valid:
                result = validate_stage_completion(target, merged)
                if not result.valid:
                    raise DiscoveryValidationError(
                        f"Stage {target.value} is missing required fields: {', '.join(result.missing_fields)}",
                        result.missing_fields,
                    )

            entry.data = merged
            entry.status = StageStatus.COMPLETED
            if entry.started_at is None:
                entry.started_at = now
            entry.completed_at = now
            entry.completion_score = completion_score

            if successor is None:
                session.status = SessionStatus.COMPLETED
                return

            following = session.progress[successor]
            if following.status == StageStatus.NOT_STARTED:
                following.status = StageStatus.IN_PROGRESS
            if following.started_at is None:
                following.started_at = now
            session.stage = successor

        session = await self._mutate(session_id, complete)
        review = review_stage_data(target, session.stage_data(target))
        logger.info(
            "stage_completed",
            session_id=session_id,
            stage=target.value,
            score=completion_score,
            next_stage=successor.value if successor else None,
        )
        if review.errors or review.warnings:
            logger.warning(
                "stage_review_issues",
                session_id=session_id,
                stage=target.value,
                errors=review.errors,
                warnings=review.warnings,
            )
        if successor is None:
            logger.info("session_completed", session_id=session_id)
        return StageCompletion(session=session, next_stage=successor, review=review)

    def validate_stage_completion(
        self,
        stage: str | DiscoveryStage,
        stage_data: dict[str, Any] | None,
    ) -> StageValidationResult:
        return validate_stage_completion(self._require_stage(stage), stage_data)

    # ------------------------------------------------------------------
    # Research and quality write-back
    # ------------------------------------------------------------------

    async def add_research_data(
        self,
        session_id: str,
        bucket_name: str,
        query: ResearchQuery | dict[str, Any],
    ) -> DiscoverySession:
        """Append a research record to a bucket.

        An unknown bucket is ignored: the session is returned unchanged and
        nothing is written.

        Raises:
            SessionNotFoundError, SessionExpiredError, SessionClosedError
            DiscoveryValidationError: the record fails the research schema
        """
        session = await self.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.research_data.bucket(bucket_name) is None:
            logger.warning("research_bucket_unknown", session_id=session_id, bucket=bucket_name)
            return session

        def append(session: DiscoverySession, now: datetime) -> None:
            record = self._research_record(query, now)
            session.research_data.bucket(bucket_name).append(record)

        session = await self._mutate(session_id, append)
        logger.info("research_recorded", session_id=session_id, bucket=bucket_name)
        return session

    @staticmethod
    def _research_record(query: ResearchQuery | dict[str, Any], now: datetime) -> ResearchQuery:
        payload = query.model_dump(by_alias=True) if isinstance(query, ResearchQuery) else dict(query)
        if not payload.get("timestamp"):
            payload["timestamp"] = now
        try:
            return ResearchQuery.model_validate(payload)
        except ValidationError as e:
            fields = validation_error_fields(e)
            raise DiscoveryValidationError(f"Invalid research query: {', '.join(fields)}", fields) from e

    async def record_quality_assessment(
        self,
        session_id: str,
        assessment: QualityAssessment,
    ) -> DiscoverySession:
        """Store the latest assessment in session metadata.

        Only metadata changes; stage statuses are left alone. Paused and
        closed sessions accept a record, expired ones do not.

        Raises:
            SessionNotFoundError, SessionExpiredError
        """

        def record(session: DiscoverySession, now: datetime) -> None:
            if self._expired(session, now):
                raise SessionExpiredError(session.session_id, self.settings.session_timeout_hours)
            session.metadata.last_quality_assessment = assessment
            session.metadata.quality_assessed_at = now

        session = await self._mutate(session_id, record, require_open=False)
        logger.info(
            "quality_assessment_recorded",
            session_id=session_id,
            overall_score=assessment.overall_score,
        )
        return session
