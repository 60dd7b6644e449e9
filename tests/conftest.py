"""Shared test fixtures for all test groups."""

from datetime import UTC, datetime, timedelta

import pytest

from prd_discovery.core.config import Settings
from prd_discovery.domain.stages import DiscoveryStage
from prd_discovery.services.session_service import DiscoverySessionService
from prd_discovery.storage.backends import MemoryStateBackend
from prd_discovery.storage.store import SessionStore

PROJECT_ID = "test-project"
START = datetime(2026, 1, 15, 9, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Memory-backed settings that ignore the environment's .env file."""
    return Settings(_env_file=None, storage_backend="memory", state_root=tmp_path)


@pytest.fixture
def backend():
    return MemoryStateBackend()


@pytest.fixture
def store(backend):
    return SessionStore(backend, PROJECT_ID)


@pytest.fixture
def service(store, settings, clock):
    return DiscoverySessionService(store, settings, clock)


@pytest.fixture
def problem_data():
    return {
        "problemStatement": "Small retailers cannot sell online without expensive custom development",
        "targetAudience": "Independent retailers",
        "successCriteria": ["Launch a store in one day", "Process payments securely"],
    }


@pytest.fixture
def market_data():
    return {
        "competitorAnalysis": [
            {"name": "Shopify", "description": "Hosted commerce platform"},
            {"name": "WooCommerce", "description": "WordPress commerce plugin"},
        ],
        "marketSize": "$6.3T global e-commerce",
        "opportunities": ["Underserved small retailers"],
    }


@pytest.fixture
def technical_data():
    return {
        "recommendedTechStack": {
            "frontend": ["React"],
            "backend": ["FastAPI"],
            "database": ["PostgreSQL"],
            "infrastructure": ["AWS"],
        },
        "architecture": {"pattern": "microservices", "components": ["catalog", "checkout"]},
        "complexityAssessment": {"overall": "Medium"},
    }


@pytest.fixture
def requirements_data():
    """5 functional + 3 non-functional requirements, priorities in mixed case."""
    functional = [
        ("FR-1", "Product catalog", "let shoppers browse products"),
        ("FR-2", "Shopping cart", "keep selected items between visits"),
        ("FR-3", "Checkout", "take card payments"),
        ("FR-4", "Order history", "list past orders"),
        ("FR-5", "User accounts", "support sign up and login"),
    ]
    non_functional = [
        ("NFR-1", "Page speed", "render pages in under 2 seconds", "performance"),
        ("NFR-2", "Payment security", "meet PCI DSS", "security"),
        ("NFR-3", "Peak load", "handle 10x holiday traffic", "scalability"),
    ]
    return {
        "functionalRequirements": [
            {"id": rid, "title": title, "description": desc, "priority": "HIGH"}
            for rid, title, desc in functional
        ],
        "nonFunctionalRequirements": [
            {"id": rid, "title": title, "description": desc, "type": kind}
            for rid, title, desc, kind in non_functional
        ],
    }


@pytest.fixture
async def ready_session(service, problem_data, market_data, technical_data, requirements_data):
    """Session with every stage before PRD generation completed."""
    session = await service.create_session("E-commerce Platform")
    sid = session.session_id
    await service.complete_stage(sid, DiscoveryStage.PROBLEM_DISCOVERY, problem_data, 90)
    await service.complete_stage(sid, DiscoveryStage.MARKET_RESEARCH, market_data, 85)
    await service.complete_stage(sid, DiscoveryStage.TECHNICAL_FEASIBILITY, technical_data, 90)
    result = await service.complete_stage(sid, DiscoveryStage.REQUIREMENTS_SYNTHESIS, requirements_data, 100)
    return result.session
