"""Load research routing overrides from a JSON file.

File shape::

    {
      "routingRules": {"technical": [{"provider": "context7", "priority": 1, "condition": "always"}]},
      "fallbackOrder": ["tavily", "context7", "perplexity"],
      "classificationKeywords": {"technical": ["api"], "market": ["pricing"]}
    }

Any section may be omitted; omitted sections keep the defaults.
"""

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from prd_discovery.domain.research import (
    ResearchQueryType,
    RoutingConfig,
    RoutingRule,
    RuleCondition,
    default_routing_config,
)

logger = structlog.get_logger(__name__)


class RuleEntry(BaseModel):
    provider: str
    priority: int = 1
    condition: RuleCondition = RuleCondition.ALWAYS


class KeywordLists(BaseModel):
    technical: list[str] | None = None
    market: list[str] | None = None


class RouterConfigFile(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    routing_rules: dict[ResearchQueryType, list[RuleEntry]] | None = None
    fallback_order: list[str] | None = Field(None, min_length=1)
    classification_keywords: KeywordLists | None = None

    @field_validator("routing_rules", mode="before")
    @classmethod
    def lowercase_query_types(cls, v):
        if isinstance(v, dict):
            return {str(k).lower(): rules for k, rules in v.items()}
        return v


def apply_router_config(base: RoutingConfig, config: RouterConfigFile) -> RoutingConfig:
    rules = dict(base.rules)
    if config.routing_rules:
        for query_type, entries in config.routing_rules.items():
            rules[query_type] = [RoutingRule(e.provider, e.priority, e.condition) for e in entries]

    keywords = config.classification_keywords or KeywordLists()
    return RoutingConfig(
        rules=rules,
        fallback_order=list(config.fallback_order or base.fallback_order),
        technical_keywords=tuple(keywords.technical) if keywords.technical else base.technical_keywords,
        market_keywords=tuple(keywords.market) if keywords.market else base.market_keywords,
    )


def load_routing_config(path: Path | None) -> RoutingConfig:
    """Defaults merged with the file at ``path``.

    A missing or invalid file is logged and the defaults are returned.
    """
    defaults = default_routing_config()
    if path is None:
        return defaults

    path = Path(path)
    if not path.is_file():
        logger.info("router_config_missing", path=str(path))
        return defaults

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        config = RouterConfigFile.model_validate(raw)
    except (OSError, ValueError) as e:
        logger.warning("router_config_invalid", path=str(path), error=str(e)[:500])
        return defaults

    logger.info("router_config_loaded", path=str(path))
    return apply_router_config(defaults, config)
