"""PRD quality scoring.

Pure, deterministic scoring of a markdown document against the session it was
generated from. Each criterion is a sum of band lookups over counts taken from
the document, so adding content never lowers a sub-score. Session facts
(tech stack, competitors, requirements) only earn credit when the document
actually mentions them.

Thresholds and keyword lists live on QualityPolicy and are tunable; the
weights, readiness boundaries and determinism are fixed contracts.
"""
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import cached_property

from prd_discovery.domain.research import COMPETITIVE_ANALYSIS, MARKET_ANALYSIS
from prd_discovery.domain.stages import DiscoveryStage, validate_stage_completion
from prd_discovery.schemas.discovery import DiscoverySession
from prd_discovery.schemas.quality import (
    AssessmentDetails,
    QualityAssessment,
    QualityCriterion,
    QualityLevel,
    ReadinessMetrics,
)

Bands = tuple[tuple[int, int], ...]

# Integer percentages so the weighted sum is exact.
CRITERIA_WEIGHTS: dict[QualityCriterion, int] = {
    QualityCriterion.COMPLETENESS: 25,
    QualityCriterion.CLARITY: 20,
    QualityCriterion.TECHNICAL_FEASIBILITY: 20,
    QualityCriterion.MARKET_VALIDATION: 15,
    QualityCriterion.REQUIREMENTS_COVERAGE: 20,
}

READY_FOR_DEVELOPMENT = 75
READY_FOR_STAKEHOLDER_REVIEW = 60
READY_FOR_TASK_GENERATION = 60

_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(\S.*?)[ \t]*#*[ \t]*$", re.MULTILINE)
_LIST_ITEM_RE = re.compile(r"^\s*(?:[-*+]|\d+[.)])\s+\S", re.MULTILINE)
_USER_STORY_RE = re.compile(r"\bas an? [^,\n]+?,? i want\b", re.IGNORECASE)


@dataclass(frozen=True)
class QualityPolicy:
    """Tunable thresholds and vocabularies for the scorer."""

    gap_floor: int = 70
    low_score: int = 60

    # completeness (30 + 50 + 20)
    word_bands: Bands = ((2000, 30), (1500, 25), (1000, 20), (500, 15), (100, 10), (20, 5))
    section_points: int = 50
    canonical_sections: tuple[tuple[str, tuple[str, ...]], ...] = (
        ("Overview", ("overview", "executive summary", "introduction", "summary")),
        ("Problem Statement", ("problem",)),
        ("Solution and Features", ("solution", "feature", "product")),
        ("Requirements", ("requirement",)),
        ("Technical Approach", ("technical", "architecture", "technology", "tech stack")),
        ("Market Analysis", ("market", "competit")),
        ("Success Metrics", ("success", "metric", "kpi")),
    )
    requirement_item_bands: Bands = ((10, 20), (7, 16), (5, 12), (3, 8), (1, 4))

    # clarity (30 + 20 + 30 + 20)
    heading_bands: Bands = ((10, 30), (7, 25), (5, 20), (3, 15), (1, 5))
    action_words: tuple[str, ...] = ("must", "should", "will", "shall", "required", "mandatory")
    action_bands: Bands = ((20, 30), (15, 25), (10, 20), (5, 15), (1, 5))
    list_bands: Bands = ((15, 20), (8, 15), (4, 10), (1, 5))

    # technical feasibility (40 + 25 + 10 + 25)
    tech_keywords: tuple[str, ...] = (
        "api", "database", "architecture", "framework",
        "infrastructure", "security", "integration", "deployment",
    )
    performance_keywords: tuple[str, ...] = (
        "performance", "scalability", "latency", "availability", "throughput",
    )

    # market validation (40 + 20 + 15 + 25)
    market_keywords: tuple[str, ...] = (
        "market", "competitor", "customer", "revenue",
        "pricing", "opportunity", "segment", "growth",
    )
    business_keywords: tuple[str, ...] = (
        "business model", "monetization", "roi", "kpi", "value proposition",
    )

    # requirements coverage (35 + 25 + 20 + 10 + 10)
    functional_bands: Bands = ((5, 35), (3, 25), (1, 12))
    non_functional_bands: Bands = ((3, 25), (2, 18), (1, 10))

    quality_levels: tuple[tuple[int, QualityLevel], ...] = (
        (90, QualityLevel.EXCELLENT),
        (75, QualityLevel.GOOD),
        (60, QualityLevel.ACCEPTABLE),
        (40, QualityLevel.NEEDS_IMPROVEMENT),
    )


DEFAULT_POLICY = QualityPolicy()


def band(value: int, bands: Bands) -> int:
    """Points for the first (threshold, points) pair with value >= threshold."""
    for threshold, points in bands:
        if value >= threshold:
            return points
    return 0


def mentions(text: str, term: str) -> bool:
    """Case-insensitive whole-term match; ``text`` must already be lowercase."""
    term = term.strip().lower()
    if not term:
        return False
    return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text) is not None


def _share(points: int, hit: int, total: int) -> int:
    if total <= 0:
        return 0
    return (points * hit) // total


@dataclass
class ParsedDocument:
    text: str
    hint_titles: tuple[str, ...] = ()

    @cached_property
    def lower(self) -> str:
        return self.text.lower()

    @cached_property
    def headings(self) -> list[tuple[int, str]]:
        return [(len(hashes), title.strip()) for hashes, title in _HEADING_RE.findall(self.text)]

    @cached_property
    def titles(self) -> list[str]:
        return [title.lower() for _, title in self.headings] + [t.lower() for t in self.hint_titles]

    @cached_property
    def word_count(self) -> int:
        return len(self.text.split())

    @cached_property
    def list_items(self) -> int:
        return len(_LIST_ITEM_RE.findall(self.text))

    @cached_property
    def section_count(self) -> int:
        return sum(1 for level, _ in self.headings if level <= 3)

    @cached_property
    def requirement_items(self) -> int:
        """List items under any heading that mentions requirements."""
        count = 0
        in_requirements = False
        for line in self.text.splitlines():
            heading = _HEADING_RE.match(line)
            if heading:
                in_requirements = "requirement" in heading.group(2).lower()
                continue
            if in_requirements and _LIST_ITEM_RE.match(line):
                count += 1
        return count

    def has_title(self, keywords: tuple[str, ...]) -> bool:
        return any(kw in title for title in self.titles for kw in keywords)

    def count_terms(self, terms: tuple[str, ...]) -> int:
        return sum(1 for term in terms if mentions(self.lower, term))

    def count_occurrences(self, words: tuple[str, ...]) -> int:
        return sum(len(re.findall(rf"\b{re.escape(w)}\b", self.lower)) for w in words)


@dataclass
class SessionFacts:
    """Ground-truth values pulled from the session's stage payloads."""

    tech_items: list[str] = field(default_factory=list)
    architecture_terms: list[str] = field(default_factory=list)
    competitors: list[str] = field(default_factory=list)
    market_size: str | None = None
    market_research_count: int = 0
    functional: list[dict] = field(default_factory=list)
    non_functional: list[dict] = field(default_factory=list)
    requirements_data: dict = field(default_factory=dict)

    @classmethod
    def from_session(cls, session: DiscoverySession | None) -> "SessionFacts":
        if session is None:
            return cls()

        technical = session.stage_data(DiscoveryStage.TECHNICAL_FEASIBILITY)
        market = session.stage_data(DiscoveryStage.MARKET_RESEARCH)
        requirements = session.stage_data(DiscoveryStage.REQUIREMENTS_SYNTHESIS)

        stack = technical.get("recommendedTechStack") or {}
        tech_items = [item for layer in stack.values() if isinstance(layer, list) for item in layer]

        architecture = technical.get("architecture") or {}
        architecture_terms = []
        if architecture.get("pattern"):
            architecture_terms.append(architecture["pattern"])
        architecture_terms.extend(architecture.get("components") or [])

        research = session.research_data
        return cls(
            tech_items=tech_items,
            architecture_terms=architecture_terms,
            competitors=[c.get("name", "") for c in market.get("competitorAnalysis") or []],
            market_size=market.get("marketSize"),
            market_research_count=len(research.bucket(MARKET_ANALYSIS) or [])
            + len(research.bucket(COMPETITIVE_ANALYSIS) or []),
            functional=list(requirements.get("functionalRequirements") or []),
            non_functional=list(requirements.get("nonFunctionalRequirements") or []),
            requirements_data=dict(requirements),
        )


def _mentioned(doc: ParsedDocument, requirement: Mapping) -> bool:
    return any(mentions(doc.lower, str(requirement.get(key) or "")) for key in ("id", "title"))


@dataclass
class CriterionResult:
    score: int
    gaps: list[str] = field(default_factory=list)


def score_completeness(doc: ParsedDocument, policy: QualityPolicy) -> CriterionResult:
    sections = policy.canonical_sections
    missing = [name for name, keywords in sections if not doc.has_title(keywords)]
    found = len(sections) - len(missing)

    score = (
        band(doc.word_count, policy.word_bands)
        + _share(policy.section_points, found, len(sections))
        + band(doc.requirement_items, policy.requirement_item_bands)
    )

    gaps = [f"Missing section: {name}" for name in missing]
    if doc.word_count < 500:
        gaps.append(f"Document is too short ({doc.word_count} words)")
    return CriterionResult(min(score, 100), gaps)


def score_clarity(doc: ParsedDocument, policy: QualityPolicy) -> CriterionResult:
    levels = {level for level, _ in doc.headings}
    hierarchy = (10 if 1 in levels else 0) + (10 if len(levels) >= 2 else 0)
    actions = doc.count_occurrences(policy.action_words)

    score = (
        band(len(doc.headings), policy.heading_bands)
        + hierarchy
        + band(actions, policy.action_bands)
        + band(doc.list_items, policy.list_bands)
    )

    gaps = []
    if len(levels) < 2:
        gaps.append("Heading hierarchy is flat")
    if actions == 0:
        gaps.append("No actionable language (must, should, shall)")
    if doc.list_items == 0:
        gaps.append("No bulleted or numbered lists")
    return CriterionResult(min(score, 100), gaps)


def score_technical(doc: ParsedDocument, facts: SessionFacts, policy: QualityPolicy) -> CriterionResult:
    keywords = doc.count_terms(policy.tech_keywords)
    stack_hits = sum(1 for item in facts.tech_items if mentions(doc.lower, item))
    arch_hits = sum(1 for term in facts.architecture_terms if mentions(doc.lower, term))
    perf = doc.count_terms(policy.performance_keywords)

    score = (
        _share(40, keywords, len(policy.tech_keywords))
        + _share(25, stack_hits, len(facts.tech_items))
        + _share(10, arch_hits, len(facts.architecture_terms))
        + _share(25, perf, len(policy.performance_keywords))
    )

    gaps = []
    if keywords * 2 < len(policy.tech_keywords):
        gaps.append("Little technical or architecture terminology")
    if facts.tech_items and stack_hits * 2 < len(facts.tech_items):
        gaps.append("Recommended tech stack from discovery is not reflected")
    if perf == 0:
        gaps.append("No performance or scalability targets")
    return CriterionResult(min(score, 100), gaps)


def score_market(doc: ParsedDocument, facts: SessionFacts, policy: QualityPolicy) -> CriterionResult:
    keywords = doc.count_terms(policy.market_keywords)
    competitor_hits = sum(1 for name in facts.competitors if mentions(doc.lower, name))
    talks_market = mentions(doc.lower, "market")
    market_data = 0
    if facts.market_size and (mentions(doc.lower, "market size") or mentions(doc.lower, facts.market_size)):
        market_data += 8
    if facts.market_research_count and talks_market:
        market_data += 7
    business = doc.count_terms(policy.business_keywords)

    score = (
        _share(40, keywords, len(policy.market_keywords))
        + _share(20, competitor_hits, len(facts.competitors))
        + market_data
        + _share(25, business, len(policy.business_keywords))
    )

    gaps = []
    if keywords * 2 < len(policy.market_keywords):
        gaps.append("Little market or customer language")
    if facts.competitors and competitor_hits == 0:
        gaps.append("Competitors from market research are not discussed")
    if market_data == 0:
        gaps.append("No market sizing or research evidence")
    if business == 0:
        gaps.append("Business model is not described")
    return CriterionResult(min(score, 100), gaps)


def score_requirements(doc: ParsedDocument, facts: SessionFacts, policy: QualityPolicy) -> CriterionResult:
    functional_hits = sum(1 for req in facts.functional if _mentioned(doc, req))
    non_functional_hits = sum(1 for req in facts.non_functional if _mentioned(doc, req))

    coverage = 0
    if doc.has_title(("requirement",)):
        validation = validate_stage_completion(DiscoveryStage.REQUIREMENTS_SYNTHESIS, facts.requirements_data)
        coverage = validation.score // 5

    has_stories = bool(_USER_STORY_RE.search(doc.text)) or mentions(doc.lower, "user story")
    has_acceptance = mentions(doc.lower, "acceptance criteria")

    score = (
        band(functional_hits, policy.functional_bands)
        + band(non_functional_hits, policy.non_functional_bands)
        + coverage
        + (10 if has_stories else 0)
        + (10 if has_acceptance else 0)
    )

    gaps = []
    if facts.functional and functional_hits < len(facts.functional):
        gaps.append(
            f"{len(facts.functional) - functional_hits} of {len(facts.functional)} "
            "functional requirements are missing from the document"
        )
    if not facts.functional:
        gaps.append("No functional requirements were captured during discovery")
    if facts.non_functional and non_functional_hits < len(facts.non_functional):
        gaps.append(
            f"{len(facts.non_functional) - non_functional_hits} of {len(facts.non_functional)} "
            "non-functional requirements are missing from the document"
        )
    if not has_stories:
        gaps.append("No user stories")
    if not has_acceptance:
        gaps.append("No acceptance criteria")
    return CriterionResult(min(score, 100), gaps)


_HEADLINE_GAPS = {
    QualityCriterion.COMPLETENESS: "Insufficient content detail and coverage",
    QualityCriterion.CLARITY: "Unclear structure and ambiguous language",
    QualityCriterion.TECHNICAL_FEASIBILITY: "Missing technical specifications and architecture details",
    QualityCriterion.MARKET_VALIDATION: "Insufficient market research and competitive analysis",
    QualityCriterion.REQUIREMENTS_COVERAGE: "Incomplete requirements definition and user stories",
}

_RECOMMENDATIONS = {
    QualityCriterion.COMPLETENESS: (
        "Add more detailed sections and expand on key concepts",
        "Include implementation details and technical specifications",
    ),
    QualityCriterion.CLARITY: (
        "Improve document structure with clear headings and sections",
        "Use more specific and actionable language",
    ),
    QualityCriterion.TECHNICAL_FEASIBILITY: (
        "Conduct additional technical feasibility validation",
        "Define architecture and technology stack in detail",
    ),
    QualityCriterion.MARKET_VALIDATION: (
        "Perform additional market research and competitive analysis",
        "Validate business value and market opportunity",
    ),
    QualityCriterion.REQUIREMENTS_COVERAGE: (
        "Add more functional and non-functional requirements",
        "Convert requirements to user story format with acceptance criteria",
    ),
}


def overall_score(criteria_scores: Mapping[QualityCriterion, int]) -> int:
    """Weighted sum rounded half up, computed in integers."""
    total = sum(CRITERIA_WEIGHTS[c] * criteria_scores.get(c, 0) for c in CRITERIA_WEIGHTS)
    return (total + 50) // 100


def quality_level(score: int, policy: QualityPolicy = DEFAULT_POLICY) -> QualityLevel:
    for threshold, level in policy.quality_levels:
        if score >= threshold:
            return level
    return QualityLevel.POOR


def confidence_level(criteria_scores: Mapping[QualityCriterion, int]) -> str:
    """High when sub-scores are high and close together."""
    scores = list(criteria_scores.values())
    if not scores:
        return "low"
    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)
    if mean >= 80 and variance < 100:
        return "high"
    if mean >= 60 and variance < 200:
        return "medium"
    return "low"


def compute_readiness(
    overall: int,
    criteria_scores: Mapping[QualityCriterion, int],
    policy: QualityPolicy = DEFAULT_POLICY,
) -> ReadinessMetrics:
    """Threshold lookups against the overall score plus derived signals.

    Rules:
        - ready_for_development: overall >= 75
        - ready_for_stakeholder_review: overall >= 60
        - ready_for_task_generation: overall >= 60
        - estimated_effort from the number of sub-scores below 60
        - priority_areas: criteria below the gap floor, lowest first
    """
    low = sum(1 for s in criteria_scores.values() if s < policy.low_score)
    if low >= 3:
        effort = "high"
    elif low == 2:
        effort = "medium"
    elif low == 1:
        effort = "low"
    else:
        effort = "minimal"

    below_floor = [c for c in CRITERIA_WEIGHTS if criteria_scores.get(c, 0) < policy.gap_floor]
    priority = sorted(below_floor, key=lambda c: criteria_scores.get(c, 0))

    return ReadinessMetrics(
        ready_for_development=overall >= READY_FOR_DEVELOPMENT,
        ready_for_stakeholder_review=overall >= READY_FOR_STAKEHOLDER_REVIEW,
        ready_for_task_generation=overall >= READY_FOR_TASK_GENERATION,
        confidence_level=confidence_level(criteria_scores),
        estimated_effort=effort,
        priority_areas=priority,
    )


def _hint_titles(structure_hints: Mapping | None) -> tuple[str, ...]:
    if not structure_hints:
        return ()
    titles = []
    for section in structure_hints.get("sections") or []:
        if isinstance(section, str):
            titles.append(section)
        elif isinstance(section, Mapping) and section.get("title"):
            titles.append(str(section["title"]))
    return tuple(titles)


def assess_prd_quality(
    document_text: str,
    session: DiscoverySession | None,
    structure_hints: Mapping | None = None,
    policy: QualityPolicy = DEFAULT_POLICY,
) -> QualityAssessment:
    """Score a PRD document against the session it came from.

    Args:
        document_text: Markdown document
        session: Originating session (None is scored as a session with no data)
        structure_hints: Optional {"sections": [...]} from the assembler;
            section titles count toward canonical sections
        policy: Thresholds and vocabularies

    Returns:
        A fully populated QualityAssessment

    Pure function -- identical inputs give identical results.
    """
    doc = ParsedDocument(document_text or "", _hint_titles(structure_hints))
    facts = SessionFacts.from_session(session)

    results = {
        QualityCriterion.COMPLETENESS: score_completeness(doc, policy),
        QualityCriterion.CLARITY: score_clarity(doc, policy),
        QualityCriterion.TECHNICAL_FEASIBILITY: score_technical(doc, facts, policy),
        QualityCriterion.MARKET_VALIDATION: score_market(doc, facts, policy),
        QualityCriterion.REQUIREMENTS_COVERAGE: score_requirements(doc, facts, policy),
    }
    criteria_scores = {criterion: max(0, result.score) for criterion, result in results.items()}
    overall = overall_score(criteria_scores)

    gaps: list[str] = []
    recommendations: list[str] = []
    for criterion, result in results.items():
        if criteria_scores[criterion] >= policy.gap_floor:
            continue
        gaps.append(_HEADLINE_GAPS[criterion])
        gaps.extend(result.gaps)
        recommendations.extend(_RECOMMENDATIONS[criterion])

    return QualityAssessment(
        overall_score=overall,
        quality_level=quality_level(overall, policy),
        criteria_scores=criteria_scores,
        gaps=gaps,
        recommendations=recommendations,
        readiness_metrics=compute_readiness(overall, criteria_scores, policy),
        assessment_details=AssessmentDetails(
            word_count=doc.word_count,
            section_count=doc.section_count,
            requirements_count=doc.requirement_items,
        ),
    )
