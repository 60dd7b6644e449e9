"""Advisory content checks for stage payloads.

Complements validate_stage_completion: that function scores field presence,
these checks flag thin content (errors) and missing nice-to-haves (warnings).
"""
from collections.abc import Mapping
from dataclasses import dataclass, field

from prd_discovery.domain.stages import DiscoveryStage, is_present


@dataclass
class StageReview:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _text_len(value: object) -> int:
    return len(value.strip()) if isinstance(value, str) else 0


def review_stage_data(stage: DiscoveryStage, data: Mapping | None) -> StageReview:
    """Review stage data for content problems.

    Args:
        stage: Stage the data belongs to
        data: Stage payload (camelCase keys)

    Returns:
        StageReview; ``valid`` is False when any error was recorded
    """
    data = data or {}
    review = StageReview()

    if stage == DiscoveryStage.PROBLEM_DISCOVERY:
        if _text_len(data.get("problemStatement")) < 10:
            review.errors.append("Problem statement is required and must be descriptive")
        if _text_len(data.get("targetAudience")) < 5:
            review.warnings.append("Target audience should be specified")
        if not is_present(data.get("successCriteria")):
            review.warnings.append("Success criteria should be defined")

    elif stage == DiscoveryStage.MARKET_RESEARCH:
        if not is_present(data.get("competitorAnalysis")):
            review.warnings.append("Competitor analysis would strengthen the research")
        if not is_present(data.get("marketSize")):
            review.warnings.append("Market size estimation would be valuable")

    elif stage == DiscoveryStage.TECHNICAL_FEASIBILITY:
        if not is_present(data.get("recommendedTechStack")):
            review.warnings.append("Technology stack recommendations are helpful")
        if not is_present(data.get("complexityAssessment")):
            review.warnings.append("Complexity assessment helps with planning")

    elif stage == DiscoveryStage.REQUIREMENTS_SYNTHESIS:
        if not is_present(data.get("functionalRequirements")):
            review.errors.append("Functional requirements are required")
        if not is_present(data.get("nonFunctionalRequirements")):
            review.warnings.append("Non-functional requirements should be considered")

    elif stage == DiscoveryStage.PRD_GENERATION:
        if _text_len(data.get("prdContent")) < 100:
            review.errors.append("PRD content is required and must be comprehensive")
        quality = data.get("qualityAssessment") or {}
        if not quality.get("overallScore"):
            review.warnings.append("Quality assessment is recommended")

    return review
