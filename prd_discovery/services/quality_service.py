"""QualityService: scores a document against a stored session and records it."""

from collections.abc import Mapping

import structlog

from prd_discovery.core.config import Settings, get_settings
from prd_discovery.core.exceptions import SessionNotFoundError
from prd_discovery.domain.quality import QualityPolicy, assess_prd_quality
from prd_discovery.schemas.quality import QualityAssessment
from prd_discovery.services.session_service import DiscoverySessionService

logger = structlog.get_logger(__name__)


class QualityService:
    def __init__(
        self,
        sessions: DiscoverySessionService,
        settings: Settings | None = None,
        policy: QualityPolicy | None = None,
    ):
        settings = settings or get_settings()
        self.sessions = sessions
        self.policy = policy or QualityPolicy(gap_floor=settings.quality_gap_floor)

    async def assess(
        self,
        session_id: str,
        document: str,
        structure_hints: Mapping | None = None,
        *,
        record: bool = True,
    ) -> QualityAssessment:
        """Assess ``document`` against the stored session.

        Args:
            session_id: Session the document was generated from
            document: Markdown text
            structure_hints: Optional assembler structure ({"sections": [...]})
            record: Write the result into session metadata

        Raises:
            SessionNotFoundError: no session with this id
        """
        session = await self.sessions.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        assessment = assess_prd_quality(document, session, structure_hints, self.policy)
        logger.info(
            "quality_assessed",
            session_id=session_id,
            overall_score=assessment.overall_score,
            quality_level=assessment.quality_level.value,
            gaps=len(assessment.gaps),
        )

        if record:
            await self.sessions.record_quality_assessment(session_id, assessment)
        return assessment
