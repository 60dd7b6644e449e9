"""PRD quality assessment schemas."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class QualityCriterion(str, Enum):
    COMPLETENESS = "completeness"
    CLARITY = "clarity"
    TECHNICAL_FEASIBILITY = "technical_feasibility"
    MARKET_VALIDATION = "market_validation"
    REQUIREMENTS_COVERAGE = "requirements_coverage"


class QualityLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    NEEDS_IMPROVEMENT = "needs-improvement"
    POOR = "poor"


class _QualityModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReadinessMetrics(_QualityModel):
    ready_for_development: bool = False
    ready_for_stakeholder_review: bool = False
    ready_for_task_generation: bool = False
    confidence_level: Literal["high", "medium", "low"] = "low"
    estimated_effort: Literal["minimal", "low", "medium", "high"] = "high"
    priority_areas: list[QualityCriterion] = Field(default_factory=list)


class AssessmentDetails(_QualityModel):
    word_count: int = 0
    section_count: int = 0
    requirements_count: int = 0


class QualityAssessment(_QualityModel):
    """Deterministic quality snapshot of one document against one session.

    Carries no timestamps so identical inputs produce identical objects.
    """

    overall_score: int = Field(0, ge=0, le=100)
    quality_level: QualityLevel = QualityLevel.POOR
    criteria_scores: dict[QualityCriterion, int] = Field(default_factory=dict)
    gaps: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    readiness_metrics: ReadinessMetrics = Field(default_factory=ReadinessMetrics)
    assessment_details: AssessmentDetails = Field(default_factory=AssessmentDetails)
