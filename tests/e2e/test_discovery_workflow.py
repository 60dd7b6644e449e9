"""End-to-end discovery workflow through the factory-built service graph.

Runs against the file backend so every step goes through a real load and save
of the state document.
"""

import json

import pytest

from prd_discovery.core.config import Settings
from prd_discovery.domain.quality import assess_prd_quality
from prd_discovery.domain.research import MARKET_ANALYSIS
from prd_discovery.domain.stages import DiscoveryStage, SessionStatus, StageStatus
from prd_discovery.providers.provider_fake import ProviderFake
from prd_discovery.services.factory import (
    build_quality_service,
    build_research_service,
    build_session_service,
)
from prd_discovery.services.prd_assembler_fake import PRDAssemblerFake
from prd_discovery.services.prd_service import PRDGenerationOptions, PRDService

pytestmark = pytest.mark.integration


@pytest.fixture
def file_settings(tmp_path):
    return Settings(_env_file=None, storage_backend="file", state_root=tmp_path)


async def test_discovery_through_requirements(
    file_settings, clock, market_data, technical_data, requirements_data, tmp_path
):
    """Create, research, then complete stages 2-4 without explicit starts."""
    sessions = build_session_service("shop", file_settings, clock=clock)

    session = await sessions.create_session("E-commerce Platform")
    sid = session.session_id

    await sessions.add_research_data(
        sid,
        MARKET_ANALYSIS,
        {"query": "e-commerce platform market size", "provider": "tavily", "queryType": "market"},
    )

    market = await sessions.complete_stage(sid, DiscoveryStage.MARKET_RESEARCH, market_data, 85)
    assert market.next_stage == DiscoveryStage.TECHNICAL_FEASIBILITY

    technical = await sessions.complete_stage(sid, DiscoveryStage.TECHNICAL_FEASIBILITY, technical_data, 90)
    assert technical.next_stage == DiscoveryStage.REQUIREMENTS_SYNTHESIS

    result = await sessions.complete_stage(sid, DiscoveryStage.REQUIREMENTS_SYNTHESIS, requirements_data, 100)

    final = result.session
    assert final.status == SessionStatus.ACTIVE
    assert final.stage == DiscoveryStage.PRD_GENERATION
    assert final.progress[DiscoveryStage.REQUIREMENTS_SYNTHESIS].status == StageStatus.COMPLETED
    assert len(final.research_data.market_analysis) == 1

    document = json.loads((tmp_path / "shop" / ".taskmaster" / "state.json").read_text())
    assert document["discoverySession"]["stage"] == "prd-generation"
    assert document["version"] == 5


async def test_research_then_prd(
    file_settings, clock, problem_data, market_data, technical_data, requirements_data, tmp_path
):
    """Routed research and a generated PRD are both recorded on the session."""
    sessions = build_session_service("shop", file_settings, clock=clock)
    research = build_research_service(file_settings, clock)
    research.register_provider("tavily", ProviderFake(label="tavily"))
    research.register_provider("context7", ProviderFake(label="context7"))

    session = await sessions.create_session("E-commerce Platform")
    sid = session.session_id
    await sessions.complete_stage(sid, DiscoveryStage.PROBLEM_DISCOVERY, problem_data, 90)
    await research.research(sessions, sid, "e-commerce competitor pricing", {"stage": "market-research"})
    await sessions.complete_stage(sid, DiscoveryStage.MARKET_RESEARCH, market_data, 85)
    await sessions.complete_stage(sid, DiscoveryStage.TECHNICAL_FEASIBILITY, technical_data, 90)
    await sessions.complete_stage(sid, DiscoveryStage.REQUIREMENTS_SYNTHESIS, requirements_data, 100)

    prd = PRDService(sessions, PRDAssemblerFake("full"), build_quality_service(sessions), file_settings)
    result = await prd.generate_prd(sid, PRDGenerationOptions(output_path=tmp_path / "docs"))

    assert result.success is True
    assert result.quality_assessment.overall_score >= 75
    assert (tmp_path / "docs" / "e-commerce-platform-prd-2026-01-15.md").is_file()

    stored = await sessions.get_current_session()
    assert stored.research_data.market_analysis[0].provider == "tavily"
    assert stored.metadata.last_quality_assessment.overall_score == result.quality_assessment.overall_score

    summary = await sessions.get_progress_summary(sid)
    assert summary["completedStages"] == 4
    assert summary["overallProgress"] == 73


async def test_simple_document_scores_below_forty(file_settings, clock):
    """A one-line document scores poorly and reports gaps."""
    sessions = build_session_service("shop", file_settings, clock=clock)
    session = await sessions.create_session("Simple App")

    assessment = assess_prd_quality("# Simple App\n\nThis is an app.", session)

    assert assessment.overall_score < 40
    below_floor = [c for c, score in assessment.criteria_scores.items() if score < 70]
    assert below_floor
    assert len(assessment.gaps) >= len(below_floor)
