"""Wire the service graph for one project from settings."""

import redis.asyncio as redis

from prd_discovery.core.config import Settings, get_settings
from prd_discovery.core.logging import configure_structlog
from prd_discovery.providers.router_config import load_routing_config
from prd_discovery.services.quality_service import QualityService
from prd_discovery.services.research_service import ResearchService
from prd_discovery.services.session_service import Clock, DiscoverySessionService
from prd_discovery.storage.backends import StateBackend, build_backend
from prd_discovery.storage.store import SessionStore


def build_session_service(
    project_id: str,
    settings: Settings | None = None,
    backend: StateBackend | None = None,
    clock: Clock | None = None,
    redis_client: redis.Redis | None = None,
) -> DiscoverySessionService:
    settings = settings or get_settings()
    backend = backend or build_backend(settings, redis_client)
    return DiscoverySessionService(SessionStore(backend, project_id), settings, clock)


def build_research_service(settings: Settings | None = None, clock: Clock | None = None) -> ResearchService:
    settings = settings or get_settings()
    return ResearchService(load_routing_config(settings.research_router_config), clock)


def build_quality_service(sessions: DiscoverySessionService) -> QualityService:
    return QualityService(sessions, sessions.settings)


def configure_logging(settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    configure_structlog(settings.log_level, settings.json_logs)
