"""Discovery stage enums, the stage successor table and completion validation.

Pure domain logic with no external dependencies.
"""
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum


class DiscoveryStage(str, Enum):
    """Five fixed discovery stages, in canonical order."""

    PROBLEM_DISCOVERY = "problem-discovery"
    MARKET_RESEARCH = "market-research"
    TECHNICAL_FEASIBILITY = "technical-feasibility"
    REQUIREMENTS_SYNTHESIS = "requirements-synthesis"
    PRD_GENERATION = "prd-generation"


class StageStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class SessionStatus(str, Enum):
    """Session lifecycle status, orthogonal to stage."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({SessionStatus.COMPLETED, SessionStatus.CANCELLED})

STAGE_ORDER: tuple[DiscoveryStage, ...] = (
    DiscoveryStage.PROBLEM_DISCOVERY,
    DiscoveryStage.MARKET_RESEARCH,
    DiscoveryStage.TECHNICAL_FEASIBILITY,
    DiscoveryStage.REQUIREMENTS_SYNTHESIS,
    DiscoveryStage.PRD_GENERATION,
)

FIRST_STAGE = DiscoveryStage.PROBLEM_DISCOVERY

# Successor table; None marks the last stage.
NEXT_STAGE: dict[DiscoveryStage, DiscoveryStage | None] = {
    DiscoveryStage.PROBLEM_DISCOVERY: DiscoveryStage.MARKET_RESEARCH,
    DiscoveryStage.MARKET_RESEARCH: DiscoveryStage.TECHNICAL_FEASIBILITY,
    DiscoveryStage.TECHNICAL_FEASIBILITY: DiscoveryStage.REQUIREMENTS_SYNTHESIS,
    DiscoveryStage.REQUIREMENTS_SYNTHESIS: DiscoveryStage.PRD_GENERATION,
    DiscoveryStage.PRD_GENERATION: None,
}

PREVIOUS_STAGE: dict[DiscoveryStage, DiscoveryStage | None] = {
    stage: prev for prev, stage in NEXT_STAGE.items() if stage is not None
}
PREVIOUS_STAGE[FIRST_STAGE] = None

STAGE_NAMES: dict[DiscoveryStage, str] = {
    DiscoveryStage.PROBLEM_DISCOVERY: "Problem Discovery",
    DiscoveryStage.MARKET_RESEARCH: "Market Research",
    DiscoveryStage.TECHNICAL_FEASIBILITY: "Technical Feasibility",
    DiscoveryStage.REQUIREMENTS_SYNTHESIS: "Requirements Synthesis",
    DiscoveryStage.PRD_GENERATION: "PRD Generation",
}


def parse_stage(value: "str | DiscoveryStage") -> DiscoveryStage | None:
    """Return the canonical stage for ``value``, or None if it is not one."""
    try:
        return DiscoveryStage(value)
    except ValueError:
        return None


def next_stage(stage: DiscoveryStage) -> DiscoveryStage | None:
    return NEXT_STAGE[stage]


def previous_stage(stage: DiscoveryStage) -> DiscoveryStage | None:
    return PREVIOUS_STAGE[stage]


def is_last_stage(stage: DiscoveryStage) -> bool:
    return NEXT_STAGE[stage] is None


@dataclass(frozen=True)
class StageRequirement:
    """Fields a stage payload must carry and the score needed to pass."""

    required_fields: tuple[str, ...]
    min_score: int


STAGE_REQUIREMENTS: dict[DiscoveryStage, StageRequirement] = {
    DiscoveryStage.PROBLEM_DISCOVERY: StageRequirement(
        ("problemStatement", "targetAudience", "successCriteria"), 70
    ),
    DiscoveryStage.MARKET_RESEARCH: StageRequirement(
        ("competitorAnalysis", "marketSize", "opportunities"), 60
    ),
    DiscoveryStage.TECHNICAL_FEASIBILITY: StageRequirement(
        ("recommendedTechStack", "architecture", "complexityAssessment"), 65
    ),
    DiscoveryStage.REQUIREMENTS_SYNTHESIS: StageRequirement(
        ("functionalRequirements", "nonFunctionalRequirements"), 75
    ),
    DiscoveryStage.PRD_GENERATION: StageRequirement(("prdContent", "qualityAssessment"), 80),
}


@dataclass
class StageValidationResult:
    """Result of checking stage data against its requirement."""

    valid: bool
    score: int
    completed_fields: int
    total_fields: int
    missing_fields: list[str] = field(default_factory=list)


def is_present(value: object) -> bool:
    """Field-presence rule shared by stage validation and quality scoring.

    Non-empty (stripped) strings and non-empty lists count as present. A
    mapping counts when at least one of its values is present, so a tech
    stack such as ``{"frontend": [], "backend": ["FastAPI"]}`` is present
    while ``{"frontend": []}`` is not. Numbers count, booleans and None do not.
    """
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    if isinstance(value, Mapping):
        return any(is_present(v) for v in value.values())
    return False


def validate_stage_completion(
    stage: DiscoveryStage,
    stage_data: Mapping | None,
) -> StageValidationResult:
    """Check stage data against the stage's required fields.

    Pure function -- no side effects, no storage access.

    Args:
        stage: Canonical stage to validate against
        stage_data: Stage payload (camelCase keys as stored)

    Returns:
        StageValidationResult with score, counts and missing field names

    Rules:
        - A field is present per ``is_present``
        - score = round(100 * completed / total)
        - valid when score >= the stage's minimum score
    """
    requirement = STAGE_REQUIREMENTS[stage]
    data = stage_data or {}

    missing = [name for name in requirement.required_fields if not is_present(data.get(name))]
    total = len(requirement.required_fields)
    completed = total - len(missing)
    score = round(100 * completed / total) if total else 100

    return StageValidationResult(
        valid=score >= requirement.min_score,
        score=score,
        completed_fields=completed,
        total_fields=total,
        missing_fields=missing,
    )
