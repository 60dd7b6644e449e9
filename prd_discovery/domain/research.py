"""Research query classification and provider routing rules.

Pure functions over a RoutingConfig; loading a config from disk lives in
prd_discovery.providers.router_config.
"""
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from prd_discovery.domain.stages import DiscoveryStage


class ResearchProviderName(str, Enum):
    CONTEXT7 = "context7"
    TAVILY = "tavily"
    PERPLEXITY = "perplexity"


class ResearchQueryType(str, Enum):
    TECHNICAL = "technical"
    MARKET = "market"
    COMPETITIVE = "competitive"
    GENERAL = "general"
    HYBRID = "hybrid"


class RuleCondition(str, Enum):
    ALWAYS = "always"
    MARKET_FOCUS = "market_focus"
    TECHNICAL_FOCUS = "technical_focus"
    FALLBACK = "fallback"


# Research bucket names as persisted on the session.
MARKET_ANALYSIS = "marketAnalysis"
TECHNICAL_VALIDATION = "technicalValidation"
COMPETITIVE_ANALYSIS = "competitiveAnalysis"
GENERAL_RESEARCH = "generalResearch"

RESEARCH_BUCKETS = (MARKET_ANALYSIS, TECHNICAL_VALIDATION, COMPETITIVE_ANALYSIS, GENERAL_RESEARCH)

_BUCKET_BY_QUERY_TYPE = {
    ResearchQueryType.MARKET: MARKET_ANALYSIS,
    ResearchQueryType.TECHNICAL: TECHNICAL_VALIDATION,
    ResearchQueryType.COMPETITIVE: COMPETITIVE_ANALYSIS,
    ResearchQueryType.HYBRID: GENERAL_RESEARCH,
    ResearchQueryType.GENERAL: GENERAL_RESEARCH,
}

TECHNICAL_KEYWORDS = (
    "framework", "library", "api", "database", "architecture",
    "implementation", "code", "development", "programming",
    "technology", "stack", "platform", "infrastructure",
    "performance", "optimization", "security", "testing",
)

MARKET_KEYWORDS = (
    "market", "competitor", "business", "revenue", "customer",
    "user", "pricing", "monetization", "industry", "trend",
    "analysis", "opportunity", "demand", "segment",
)


@dataclass(frozen=True)
class RoutingRule:
    provider: str
    priority: int = 1
    condition: RuleCondition = RuleCondition.ALWAYS


@dataclass
class RoutingConfig:
    """Routing rules per query type, fallback order and classification keywords."""

    rules: dict[ResearchQueryType, list[RoutingRule]]
    fallback_order: list[str]
    technical_keywords: tuple[str, ...] = TECHNICAL_KEYWORDS
    market_keywords: tuple[str, ...] = MARKET_KEYWORDS


def default_routing_config() -> RoutingConfig:
    context7 = ResearchProviderName.CONTEXT7.value
    tavily = ResearchProviderName.TAVILY.value
    perplexity = ResearchProviderName.PERPLEXITY.value

    return RoutingConfig(
        rules={
            ResearchQueryType.TECHNICAL: [
                RoutingRule(context7, 1, RuleCondition.ALWAYS),
                RoutingRule(perplexity, 2, RuleCondition.FALLBACK),
            ],
            ResearchQueryType.MARKET: [
                RoutingRule(tavily, 1, RuleCondition.ALWAYS),
                RoutingRule(perplexity, 2, RuleCondition.FALLBACK),
            ],
            ResearchQueryType.COMPETITIVE: [
                RoutingRule(tavily, 1, RuleCondition.ALWAYS),
                RoutingRule(perplexity, 2, RuleCondition.FALLBACK),
            ],
            ResearchQueryType.HYBRID: [
                RoutingRule(tavily, 1, RuleCondition.MARKET_FOCUS),
                RoutingRule(context7, 1, RuleCondition.TECHNICAL_FOCUS),
                RoutingRule(perplexity, 2, RuleCondition.FALLBACK),
            ],
            ResearchQueryType.GENERAL: [
                RoutingRule(perplexity, 1, RuleCondition.ALWAYS),
                RoutingRule(tavily, 2, RuleCondition.FALLBACK),
            ],
        },
        fallback_order=[tavily, context7, perplexity],
    )


def bucket_for_query_type(query_type: ResearchQueryType) -> str:
    return _BUCKET_BY_QUERY_TYPE[query_type]


def classify_research_query(
    query: str,
    context: Mapping | None = None,
    config: RoutingConfig | None = None,
) -> ResearchQueryType:
    """Classify a research query.

    Args:
        query: Free-text research query
        context: Optional hints ("stage", "focus")
        config: Keyword lists to use (defaults when omitted)

    Returns:
        ResearchQueryType

    Rules:
        - technical-feasibility stage -> TECHNICAL, market-research stage -> MARKET
        - focus "competitive"/"competitors" -> COMPETITIVE
        - otherwise the keyword list with more substring matches wins
        - a tie with at least one match each -> HYBRID
        - no matches -> GENERAL
    """
    context = context or {}
    technical_keywords = config.technical_keywords if config else TECHNICAL_KEYWORDS
    market_keywords = config.market_keywords if config else MARKET_KEYWORDS

    stage = context.get("stage")
    if stage == DiscoveryStage.TECHNICAL_FEASIBILITY:
        return ResearchQueryType.TECHNICAL
    if stage == DiscoveryStage.MARKET_RESEARCH:
        return ResearchQueryType.MARKET

    if context.get("focus") in ("competitive", "competitors"):
        return ResearchQueryType.COMPETITIVE

    text = query.lower()
    technical = sum(1 for kw in technical_keywords if kw.lower() in text)
    market = sum(1 for kw in market_keywords if kw.lower() in text)

    if technical > market:
        return ResearchQueryType.TECHNICAL
    if market > technical:
        return ResearchQueryType.MARKET
    if technical > 0:
        return ResearchQueryType.HYBRID
    return ResearchQueryType.GENERAL


def evaluate_rule(rule: RoutingRule, context: Mapping) -> bool:
    if rule.condition == RuleCondition.ALWAYS:
        return True
    if rule.condition == RuleCondition.MARKET_FOCUS:
        return context.get("focus") == "market" or context.get("stage") == DiscoveryStage.MARKET_RESEARCH
    if rule.condition == RuleCondition.TECHNICAL_FOCUS:
        return (
            context.get("focus") == "technical"
            or context.get("stage") == DiscoveryStage.TECHNICAL_FEASIBILITY
        )
    return False


def select_provider(
    query_type: ResearchQueryType,
    context: Mapping | None,
    config: RoutingConfig,
) -> str:
    """Pick the provider for a query type.

    The first rule whose condition holds wins; with no match the first rule's
    provider is used, and with no rules at all the head of the fallback order.
    """
    context = context or {}
    rules = config.rules.get(query_type) or []
    for rule in rules:
        if evaluate_rule(rule, context):
            return rule.provider
    if rules:
        return rules[0].provider
    return config.fallback_order[0]


def explain_routing_decision(query_type: ResearchQueryType, provider: str) -> str:
    explanations = {
        ResearchQueryType.TECHNICAL: f"Technical query routed to {provider} for documentation and feasibility analysis",
        ResearchQueryType.MARKET: f"Market query routed to {provider} for competitive or market research",
        ResearchQueryType.COMPETITIVE: f"Competitive query routed to {provider}",
        ResearchQueryType.HYBRID: f"Hybrid query routed to {provider} based on context",
        ResearchQueryType.GENERAL: f"General query routed to {provider}",
    }
    return explanations.get(query_type, f"Query routed to {provider}")


@dataclass
class RoutingPlan:
    """Ordered providers to try for one query."""

    query_type: ResearchQueryType
    primary: str
    candidates: list[str] = field(default_factory=list)


def plan_route(
    query: str,
    context: Mapping | None,
    config: RoutingConfig,
) -> RoutingPlan:
    """Primary provider first, then the fallback order without duplicates."""
    query_type = classify_research_query(query, context, config)
    primary = select_provider(query_type, context, config)
    candidates = [primary] + [p for p in config.fallback_order if p != primary]
    return RoutingPlan(query_type=query_type, primary=primary, candidates=candidates)
