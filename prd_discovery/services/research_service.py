"""ResearchService: routes research queries to providers and records outcomes.

Routing picks a primary provider from the query classification and then
walks the fallback order. Each provider is tried at most once per query;
nothing is retried.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from prd_discovery.core.exceptions import (
    ProviderError,
    ResearchFailedError,
    UnknownProviderError,
)
from prd_discovery.domain.research import (
    ResearchProviderName,
    ResearchQueryType,
    RoutingConfig,
    bucket_for_query_type,
    default_routing_config,
    explain_routing_decision,
    plan_route,
)
from prd_discovery.providers.adapters import ProviderAdapter, build_provider_adapter
from prd_discovery.schemas.discovery import DiscoverySession
from prd_discovery.services.session_service import Clock, DiscoverySessionService, utc_now

logger = structlog.get_logger(__name__)


@dataclass
class ResearchResult:
    provider: str
    query_type: ResearchQueryType
    query: str
    results: Any
    routing_decision: str
    timestamp: datetime
    fallback_used: bool = False
    attempts: list[dict] = field(default_factory=list)


@dataclass
class BatchItem:
    query: str
    result: ResearchResult | None = None
    error: str | None = None


class ResearchService:
    """Provider registry plus routing with fallback."""

    def __init__(self, config: RoutingConfig | None = None, clock: Clock | None = None):
        self.config = config or default_routing_config()
        self.clock = clock or utc_now
        self.providers: dict[str, ProviderAdapter] = {}

    def register_provider(self, name: str, instance: Any) -> ProviderAdapter:
        """Wrap and register a native provider.

        Raises:
            UnknownProviderError: name is not a supported provider
        """
        if name not in {p.value for p in ResearchProviderName}:
            raise UnknownProviderError(name)
        adapter = build_provider_adapter(name, instance)
        self.providers[name] = adapter
        logger.debug("provider_registered", provider=name)
        return adapter

    async def _try_provider(self, name: str, query_type: ResearchQueryType, query: str, context: Mapping) -> Any:
        adapter = self.providers.get(name)
        if adapter is None:
            raise ProviderError(name, f"Provider {name} not registered")
        if not await adapter.is_available(context):
            raise ProviderError(name, f"Provider {name} unavailable")
        return await adapter.execute(query_type, query, context)

    async def route_query(self, query: str, context: Mapping | None = None) -> ResearchResult:
        """Run ``query`` on the best provider, falling back in configured order.

        Raises:
            ResearchFailedError: every candidate was unregistered, unavailable or failed
        """
        context = dict(context or {})
        plan = plan_route(query, context, self.config)
        attempts: list[dict] = []

        for name in plan.candidates:
            try:
                results = await self._try_provider(name, plan.query_type, query, context)
            except Exception as e:
                attempts.append({"provider": name, "error": str(e)})
                logger.warning(
                    "research_provider_failed",
                    provider=name,
                    query_type=plan.query_type.value,
                    error=str(e)[:200],
                    error_type=type(e).__name__,
                )
                continue

            fallback_used = name != plan.primary
            decision = (
                f"Fallback to {name}" if fallback_used else explain_routing_decision(plan.query_type, name)
            )
            logger.info(
                "research_routed",
                provider=name,
                query_type=plan.query_type.value,
                fallback_used=fallback_used,
            )
            return ResearchResult(
                provider=name,
                query_type=plan.query_type,
                query=query,
                results=results,
                routing_decision=decision,
                timestamp=self.clock(),
                fallback_used=fallback_used,
                attempts=attempts,
            )

        logger.error("research_failed", query_type=plan.query_type.value, attempts=len(attempts))
        raise ResearchFailedError(query, attempts)

    async def route_batch(self, queries: list[Mapping]) -> list[BatchItem]:
        """Route several ``{"query", "context"}`` items concurrently.

        Per-query failures are reported on the item, never raised.
        """

        async def run(item: Mapping) -> BatchItem:
            query = item["query"]
            try:
                return BatchItem(query=query, result=await self.route_query(query, item.get("context")))
            except ResearchFailedError as e:
                return BatchItem(query=query, error=e.message)

        results = await asyncio.gather(*(run(item) for item in queries))
        logger.debug("research_batch_completed", total=len(results), failed=sum(1 for r in results if r.error))
        return list(results)

    async def research(
        self,
        sessions: DiscoverySessionService,
        session_id: str,
        query: str,
        context: Mapping | None = None,
    ) -> tuple[DiscoverySession, ResearchResult | None]:
        """Route a query and record the outcome on the session.

        Success and failure are both recorded, in the bucket matching the
        query type. The routing error is not re-raised; a failed query comes
        back with a None result.
        """
        context = dict(context or {})
        try:
            result = await self.route_query(query, context)
        except ResearchFailedError as e:
            plan = plan_route(query, context, self.config)
            record = {
                "query": query,
                "provider": plan.primary,
                "queryType": plan.query_type,
                "timestamp": self.clock(),
                "success": False,
                "errorMessage": e.message,
            }
            session = await sessions.add_research_data(session_id, bucket_for_query_type(plan.query_type), record)
            return session, None

        record = {
            "query": query,
            "provider": result.provider,
            "queryType": result.query_type,
            "timestamp": result.timestamp,
            "success": True,
            "results": result.results,
        }
        session = await sessions.add_research_data(session_id, bucket_for_query_type(result.query_type), record)
        return session, result
