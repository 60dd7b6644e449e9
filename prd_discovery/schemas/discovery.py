"""Discovery session schemas: stage payloads, research records and persisted state.

Models serialize with camelCase keys (the persisted JSON shape) and accept
either camelCase or snake_case on input.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from prd_discovery.core.exceptions import DiscoveryValidationError
from prd_discovery.domain.research import RESEARCH_BUCKETS, ResearchQueryType
from prd_discovery.domain.stages import (
    STAGE_ORDER,
    DiscoveryStage,
    SessionStatus,
    StageStatus,
)
from prd_discovery.schemas.quality import QualityAssessment

PROJECT_NAME_PATTERN = r"^[a-zA-Z0-9\s\-_]+$"

Level = Literal["low", "medium", "high"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PayloadModel(CamelModel):
    """Stage payload base: unknown keys are kept as-is."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


def _lower(v: Any) -> Any:
    return v.strip().lower() if isinstance(v, str) else v


# --- Problem discovery ---


class ProblemDiscoveryData(PayloadModel):
    problem_statement: str | None = Field(None, min_length=10, max_length=1000)
    target_audience: str | None = None
    success_criteria: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    stakeholders: list[str] = Field(default_factory=list)


# --- Market research ---


class Competitor(PayloadModel):
    name: str
    description: str
    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    market_share: str | None = None


class UserPersona(PayloadModel):
    name: str
    description: str
    needs: list[str] = Field(default_factory=list)
    pain_points: list[str] = Field(default_factory=list)


class MarketResearchData(PayloadModel):
    competitor_analysis: list[Competitor] = Field(default_factory=list)
    market_size: str | None = None
    opportunities: list[str] = Field(default_factory=list)
    threats: list[str] = Field(default_factory=list)
    target_market: str | None = None
    user_personas: list[UserPersona] = Field(default_factory=list)


# --- Technical feasibility ---


class TechStack(PayloadModel):
    frontend: list[str] = Field(default_factory=list)
    backend: list[str] = Field(default_factory=list)
    database: list[str] = Field(default_factory=list)
    infrastructure: list[str] = Field(default_factory=list)
    third_party: list[str] = Field(default_factory=list)

    def all_items(self) -> list[str]:
        return [*self.frontend, *self.backend, *self.database, *self.infrastructure, *self.third_party]


class Architecture(PayloadModel):
    pattern: str | None = None
    components: list[str] = Field(default_factory=list)
    data_flow: str | None = None


class ComplexityAssessment(PayloadModel):
    overall: Level | None = None
    frontend: Level | None = None
    backend: Level | None = None
    integration: Level | None = None

    @field_validator("overall", "frontend", "backend", "integration", mode="before")
    @classmethod
    def normalize_level(cls, v: Any) -> Any:
        return _lower(v)


class TechnicalFeasibilityData(PayloadModel):
    recommended_tech_stack: TechStack | None = None
    architecture: Architecture | None = None
    complexity_assessment: ComplexityAssessment | None = None
    estimated_timeline: str | None = None
    risks: list[str] = Field(default_factory=list)
    mitigations: list[str] = Field(default_factory=list)


# --- Requirements synthesis ---


class FunctionalRequirement(PayloadModel):
    id: str
    title: str
    description: str
    priority: Level
    category: str | None = None

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> Any:
        """Accept "HIGH", " High " and friends."""
        return _lower(v)


class NonFunctionalRequirement(PayloadModel):
    id: str
    title: str
    description: str
    type: Literal["performance", "security", "usability", "reliability", "scalability"]
    criteria: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        return _lower(v)


class UserStory(PayloadModel):
    id: str
    title: str
    description: str
    acceptance_criteria: list[str] = Field(default_factory=list)
    priority: Level

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> Any:
        return _lower(v)


class RequirementDependency(PayloadModel):
    from_: str = Field(alias="from")
    to: str
    type: Literal["blocks", "depends-on", "related"]

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        return _lower(v)


class RequirementsSynthesisData(PayloadModel):
    functional_requirements: list[FunctionalRequirement] = Field(default_factory=list)
    non_functional_requirements: list[NonFunctionalRequirement] = Field(default_factory=list)
    user_stories: list[UserStory] = Field(default_factory=list)
    dependencies: list[RequirementDependency] = Field(default_factory=list)


# --- PRD generation ---


class QualitySnapshot(PayloadModel):
    overall_score: int | None = Field(None, ge=0, le=100)
    criteria: dict[str, int] = Field(default_factory=dict)
    recommendations: list[str] = Field(default_factory=list)
    gaps: list[str] = Field(default_factory=list)


class PRDGenerationData(PayloadModel):
    prd_content: str | None = None
    quality_assessment: QualitySnapshot | None = None
    prd_file_path: str | None = None
    generated_at: datetime | None = None


STAGE_PAYLOAD_MODELS: dict[DiscoveryStage, type[PayloadModel]] = {
    DiscoveryStage.PROBLEM_DISCOVERY: ProblemDiscoveryData,
    DiscoveryStage.MARKET_RESEARCH: MarketResearchData,
    DiscoveryStage.TECHNICAL_FEASIBILITY: TechnicalFeasibilityData,
    DiscoveryStage.REQUIREMENTS_SYNTHESIS: RequirementsSynthesisData,
    DiscoveryStage.PRD_GENERATION: PRDGenerationData,
}


def _loc_part(part: Any) -> str:
    if isinstance(part, str) and "_" in part.strip("_"):
        return to_camel(part)
    return str(part)


def validation_error_fields(exc: ValidationError, prefix: str = "") -> list[str]:
    """Dotted camelCase field paths for every error in a pydantic ValidationError.

    Locations follow whichever key the input used, so snake_case parts are
    mapped to their camelCase alias.
    """
    fields = []
    for error in exc.errors():
        path = ".".join(_loc_part(part) for part in error["loc"])
        if prefix:
            path = f"{prefix}.{path}" if path else prefix
        if path not in fields:
            fields.append(path)
    return fields


def normalize_stage_data(stage: DiscoveryStage, data: dict) -> dict:
    """Validate a stage payload and return it in its normalized stored form.

    Only keys the caller supplied are returned; defaults are not filled in.

    Raises:
        DiscoveryValidationError: naming each offending field
    """
    model = STAGE_PAYLOAD_MODELS[stage]
    try:
        parsed = model.model_validate(data)
    except ValidationError as exc:
        fields = validation_error_fields(exc)
        raise DiscoveryValidationError(
            f"Invalid {stage.value} data: {', '.join(fields)}", fields
        ) from exc
    return parsed.model_dump(mode="json", by_alias=True, exclude_unset=True)


# --- Session ---


class ResearchQuery(CamelModel):
    """One research action. Immutable once recorded."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow"
    )

    query: str = Field(..., min_length=3, max_length=200)
    provider: str
    query_type: ResearchQueryType = ResearchQueryType.GENERAL
    timestamp: datetime
    success: bool = True
    results: Any = None
    error_message: str | None = None


class ResearchData(CamelModel):
    market_analysis: list[ResearchQuery] = Field(default_factory=list)
    technical_validation: list[ResearchQuery] = Field(default_factory=list)
    competitive_analysis: list[ResearchQuery] = Field(default_factory=list)
    general_research: list[ResearchQuery] = Field(default_factory=list)

    def bucket(self, name: str) -> list[ResearchQuery] | None:
        """Return the bucket list for a persisted bucket name, or None if unknown."""
        if name not in RESEARCH_BUCKETS:
            return None
        return getattr(self, _BUCKET_ATTRS[name])

    def total(self) -> int:
        return sum(len(getattr(self, attr)) for attr in _BUCKET_ATTRS.values())


_BUCKET_ATTRS = {to_camel(name): name for name in ResearchData.model_fields}


class StageProgress(CamelModel):
    status: StageStatus = StageStatus.NOT_STARTED
    completion_score: int = Field(0, ge=0, le=100)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def completed_at_matches_status(self) -> "StageProgress":
        if (self.status == StageStatus.COMPLETED) != (self.completed_at is not None):
            raise ValueError("completedAt must be set if and only if status is completed")
        return self


class SessionMetadata(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    user_preferences: dict[str, Any] = Field(default_factory=dict)
    tech_stack_preferences: list[str] = Field(default_factory=list)
    inspiration_references: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    last_quality_assessment: QualityAssessment | None = None
    quality_assessed_at: datetime | None = None


class DiscoverySession(CamelModel):
    session_id: str
    project_name: str = Field(..., min_length=2, max_length=100, pattern=PROJECT_NAME_PATTERN)
    stage: DiscoveryStage
    status: SessionStatus
    progress: dict[DiscoveryStage, StageProgress]
    created: datetime
    last_updated: datetime
    research_data: ResearchData = Field(default_factory=ResearchData)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)

    @field_validator("session_id")
    @classmethod
    def session_id_is_uuid(cls, v: str) -> str:
        UUID(v)
        return v

    @model_validator(mode="after")
    def check_progress(self) -> "DiscoverySession":
        """Every stage has a progress entry and its payload is normalized."""
        missing = [stage.value for stage in STAGE_ORDER if stage not in self.progress]
        if missing:
            raise ValueError(f"progress is missing stages: {', '.join(missing)}")

        for stage, entry in self.progress.items():
            model = STAGE_PAYLOAD_MODELS[stage]
            entry.data = model.model_validate(entry.data).model_dump(
                mode="json", by_alias=True, exclude_unset=True
            )
        return self

    def stage_data(self, stage: DiscoveryStage) -> dict[str, Any]:
        return self.progress[stage].data

    def is_stage_completed(self, stage: DiscoveryStage) -> bool:
        return self.progress[stage].status == StageStatus.COMPLETED


class ExtendedState(CamelModel):
    """Persisted per-project document: sibling workflow state plus the session.

    Unknown sibling keys written by other tools are preserved.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    current_tag: str = "master"
    last_switched: datetime | None = None
    branch_tag_mapping: dict[str, str] = Field(default_factory=dict)
    migration_notice_shown: bool = False
    discovery_session: DiscoverySession | None = None
    version: int = Field(0, ge=0)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
