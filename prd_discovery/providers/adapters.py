"""Uniform adapters over concrete research providers.

Every adapter exposes the same two methods:
- execute(query_type, query, context): run the query against the provider
- is_available(context): whether the provider can serve requests now

Each provider maps the uniform call onto its own native methods. Native
methods may be sync or async; a missing method yields None (or True for
``is_available``). Adapters never retry and never cache.
"""

import inspect
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from prd_discovery.core.exceptions import ProviderUnavailableError
from prd_discovery.domain.research import ResearchProviderName, ResearchQueryType
from prd_discovery.domain.stages import DiscoveryStage

logger = structlog.get_logger(__name__)

DEFAULT_PERPLEXITY_MODEL = "llama-3.1-sonar-small-128k-online"

ExecuteFn = Callable[[ResearchQueryType, str, Mapping], Awaitable[Any]]
AvailableFn = Callable[[Mapping], Awaitable[bool]]


async def call_native(instance: Any, method: str, *args: Any, default: Any = None) -> Any:
    """Call ``instance.method(*args)``, awaiting the result when needed."""
    fn = getattr(instance, method, None)
    if not callable(fn):
        logger.debug("provider_method_missing", method=method, provider_type=type(instance).__name__)
        return default
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


@dataclass(frozen=True)
class ProviderAdapter:
    name: str
    _execute: ExecuteFn
    _is_available: AvailableFn

    async def execute(self, query_type: ResearchQueryType, query: str, context: Mapping | None = None) -> Any:
        return await self._execute(query_type, query, context or {})

    async def is_available(self, context: Mapping | None = None) -> bool:
        return bool(await self._is_available(context or {}))


def _context7_adapter(instance: Any) -> ProviderAdapter:
    async def execute(query_type: ResearchQueryType, query: str, context: Mapping) -> Any:
        technologies = context.get("technologies") or []
        if technologies:
            return await call_native(instance, "validate_technical_feasibility", technologies, query)
        if context.get("projectType"):
            return await call_native(
                instance,
                "get_architecture_recommendations",
                {
                    "projectType": context["projectType"],
                    "features": context.get("features") or [],
                    "scale": context.get("scale") or "medium",
                },
            )
        return await call_native(instance, "resolve_library_id", query)

    async def is_available(context: Mapping) -> bool:
        return await call_native(instance, "is_available", default=True)

    return ProviderAdapter(ResearchProviderName.CONTEXT7.value, execute, is_available)


def _tavily_adapter(instance: Any) -> ProviderAdapter:
    async def execute(query_type: ResearchQueryType, query: str, context: Mapping) -> Any:
        api_key = context.get("apiKey")
        if query_type == ResearchQueryType.MARKET or context.get("stage") == DiscoveryStage.MARKET_RESEARCH:
            return await call_native(
                instance,
                "research_market_opportunity",
                {
                    "projectType": context.get("projectType"),
                    "targetMarket": context.get("targetMarket"),
                    "competitors": context.get("competitors"),
                    "features": context.get("features"),
                },
                {"apiKey": api_key},
            )
        return await call_native(
            instance,
            "search",
            query,
            {"apiKey": api_key, "searchDepth": "advanced", "maxResults": 10, "includeAnswer": True},
        )

    async def is_available(context: Mapping) -> bool:
        return await call_native(instance, "is_available", context.get("apiKey"), default=True)

    return ProviderAdapter(ResearchProviderName.TAVILY.value, execute, is_available)


def _perplexity_adapter(instance: Any) -> ProviderAdapter:
    async def execute(query_type: ResearchQueryType, query: str, context: Mapping) -> Any:
        return await call_native(
            instance,
            "generate_text",
            {
                "apiKey": context.get("apiKey"),
                "modelId": context.get("modelId") or DEFAULT_PERPLEXITY_MODEL,
                "messages": [
                    {"role": "user", "content": f"Research and provide comprehensive information about: {query}"}
                ],
                "maxTokens": 2000,
                "temperature": 0.1,
            },
        )

    async def is_available(context: Mapping) -> bool:
        return bool(context.get("apiKey"))

    return ProviderAdapter(ResearchProviderName.PERPLEXITY.value, execute, is_available)


def _unsupported_adapter(name: str) -> ProviderAdapter:
    async def execute(query_type: ResearchQueryType, query: str, context: Mapping) -> Any:
        raise ProviderUnavailableError(name, f"No adapter for provider {name}")

    async def is_available(context: Mapping) -> bool:
        return False

    return ProviderAdapter(name, execute, is_available)


ADAPTER_BUILDERS: dict[str, Callable[[Any], ProviderAdapter]] = {
    ResearchProviderName.CONTEXT7.value: _context7_adapter,
    ResearchProviderName.TAVILY.value: _tavily_adapter,
    ResearchProviderName.PERPLEXITY.value: _perplexity_adapter,
}


def build_provider_adapter(name: str, instance: Any) -> ProviderAdapter:
    """Wrap ``instance`` in the adapter for ``name``.

    Unknown names get an adapter that is never available and always fails.
    """
    builder = ADAPTER_BUILDERS.get(str(name))
    if builder is None:
        logger.warning("provider_adapter_unknown", provider=str(name))
        return _unsupported_adapter(str(name))
    return builder(instance)
