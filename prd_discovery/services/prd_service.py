"""PRDService: precondition checks, assembly delegation, scoring and saving.

The document text itself comes from an injected PRDAssembler; this service
only decides whether the session is ready, scores the result, optionally
writes it to disk and records it on the prd-generation stage.
"""

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from prd_discovery.core.config import Settings, get_settings
from prd_discovery.core.exceptions import (
    DiscoveryError,
    PRDAssemblyError,
    RequirementsIncompleteError,
    SessionNotFoundError,
)
from prd_discovery.domain.quality import READY_FOR_DEVELOPMENT
from prd_discovery.domain.stages import DiscoveryStage
from prd_discovery.schemas.discovery import DiscoverySession
from prd_discovery.schemas.quality import QualityAssessment
from prd_discovery.services.quality_service import QualityService
from prd_discovery.services.session_service import DiscoverySessionService
from prd_discovery.storage.backends import atomic_write_text

logger = structlog.get_logger(__name__)


@dataclass
class PRDGenerationOptions:
    template_type: str | None = None
    include_research_data: bool = True
    output_path: Path | None = None


@dataclass
class AssembledPRD:
    content: str
    structure: dict[str, Any] = field(default_factory=dict)
    template: str = "standard"


@runtime_checkable
class PRDAssembler(Protocol):
    """Turns a session into markdown text plus a structure description."""

    async def assemble(self, session: DiscoverySession, options: PRDGenerationOptions) -> AssembledPRD:
        ...


@dataclass
class PRDGenerationResult:
    success: bool
    prd: dict[str, Any] | None = None
    quality_assessment: QualityAssessment | None = None
    recommendations: list[str] = field(default_factory=list)
    error: dict[str, Any] | None = None


def ensure_ready_for_prd(session: DiscoverySession, min_functional: int = 3) -> None:
    """Check the public session shape for PRD preconditions.

    Raises:
        RequirementsIncompleteError: requirements synthesis not completed, or
            fewer than ``min_functional`` functional requirements
    """
    if not session.is_stage_completed(DiscoveryStage.REQUIREMENTS_SYNTHESIS):
        raise RequirementsIncompleteError(
            "Requirements synthesis must be completed before PRD generation",
            {"stage": DiscoveryStage.REQUIREMENTS_SYNTHESIS.value},
        )

    functional = session.stage_data(DiscoveryStage.REQUIREMENTS_SYNTHESIS).get("functionalRequirements") or []
    if len(functional) < min_functional:
        raise RequirementsIncompleteError(
            f"At least {min_functional} functional requirements are needed for PRD generation",
            {"functional_requirements": len(functional), "minimum": min_functional},
        )


def prd_filename(project_name: str, generated_at) -> str:
    slug = re.sub(r"\s+", "-", project_name.strip().lower())
    return f"{slug}-prd-{generated_at.date().isoformat()}.md"


def extra_recommendations(assessment: QualityAssessment, session: DiscoverySession) -> list[str]:
    recommendations = list(assessment.recommendations)
    data = session.stage_data(DiscoveryStage.REQUIREMENTS_SYNTHESIS)

    if len(data.get("functionalRequirements") or []) < 5:
        recommendations.append("Consider adding more detailed functional requirements")
    if len(data.get("nonFunctionalRequirements") or []) < 3:
        recommendations.append("Add non-functional requirements for performance, security, and usability")
    if assessment.overall_score < READY_FOR_DEVELOPMENT:
        recommendations.append("PRD quality is below recommended threshold - consider additional discovery research")
    return recommendations


class PRDService:
    def __init__(
        self,
        sessions: DiscoverySessionService,
        assembler: PRDAssembler,
        quality: QualityService | None = None,
        settings: Settings | None = None,
    ):
        self.sessions = sessions
        self.assembler = assembler
        self.settings = settings or get_settings()
        self.quality = quality or QualityService(sessions, self.settings)

    async def generate_prd(
        self,
        session_id: str,
        options: PRDGenerationOptions | None = None,
    ) -> PRDGenerationResult:
        """Generate, score and record a PRD.

        Failures come back as ``success=False`` with ``error={"code", "message"}``,
        including errors raised by the assembler.
        """
        options = options or PRDGenerationOptions()
        try:
            return await self._generate(session_id, options)
        except DiscoveryError as e:
            logger.warning("prd_generation_rejected", session_id=session_id, code=e.code, error=e.message)
            return PRDGenerationResult(success=False, error={"code": e.code, "message": e.message})

    async def _generate(self, session_id: str, options: PRDGenerationOptions) -> PRDGenerationResult:
        session = await self.sessions.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        ensure_ready_for_prd(session, self.settings.min_functional_requirements)

        try:
            assembled = await self.assembler.assemble(session, options)
        except Exception as exc:
            logger.warning(
                "prd_assembly_failed",
                session_id=session_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PRDAssemblyError(str(exc), type(exc).__name__) from exc

        assessment = await self.quality.assess(session_id, assembled.content, assembled.structure, record=False)
        generated_at = self.sessions.clock()

        file_path = None
        if options.output_path is not None:
            path = Path(options.output_path) / prd_filename(session.project_name, generated_at)
            await asyncio.to_thread(atomic_write_text, path, assembled.content)
            file_path = str(path)
            logger.info("prd_saved", session_id=session_id, path=file_path)

        stage_data = {
            "prdContent": assembled.content,
            "qualityAssessment": {
                "overallScore": assessment.overall_score,
                "criteria": {c.value: s for c, s in assessment.criteria_scores.items()},
                "recommendations": assessment.recommendations,
                "gaps": assessment.gaps,
            },
            "generatedAt": generated_at,
        }
        if file_path:
            stage_data["prdFilePath"] = file_path
        await self.sessions.update_session_stage(session_id, DiscoveryStage.PRD_GENERATION, stage_data)
        await self.sessions.record_quality_assessment(session_id, assessment)

        logger.info(
            "prd_generated",
            session_id=session_id,
            template=assembled.template,
            overall_score=assessment.overall_score,
        )
        return PRDGenerationResult(
            success=True,
            prd={
                "content": assembled.content,
                "structure": assembled.structure,
                "metadata": {
                    "projectName": session.project_name,
                    "template": assembled.template,
                    "generatedAt": generated_at.isoformat(),
                    "discoverySessionId": session.session_id,
                    "qualityScore": assessment.overall_score,
                    "filePath": file_path,
                },
            },
            quality_assessment=assessment,
            recommendations=extra_recommendations(assessment, session),
        )
