"""Tests for stage payload schemas and the persisted state document."""

import uuid
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from prd_discovery.core.exceptions import DiscoveryValidationError
from prd_discovery.domain.research import MARKET_ANALYSIS
from prd_discovery.domain.stages import STAGE_ORDER, DiscoveryStage, SessionStatus, StageStatus
from prd_discovery.schemas.discovery import (
    DiscoverySession,
    ExtendedState,
    ResearchData,
    ResearchQuery,
    RequirementsSynthesisData,
    StageProgress,
    normalize_stage_data,
    validation_error_fields,
)

pytestmark = pytest.mark.unit

NOW = datetime(2026, 1, 15, 9, 0, tzinfo=UTC)


def session_kwargs(**overrides) -> dict:
    kwargs = {
        "session_id": str(uuid.uuid4()),
        "project_name": "E-commerce Platform",
        "stage": DiscoveryStage.PROBLEM_DISCOVERY,
        "status": SessionStatus.ACTIVE,
        "progress": {stage: StageProgress() for stage in STAGE_ORDER},
        "created": NOW,
        "last_updated": NOW,
    }
    kwargs.update(overrides)
    return kwargs


class TestStagePayloads:
    """Test normalize_stage_data."""

    def test_priority_and_type_are_lowercased(self, requirements_data):
        """Priorities and types are stored lowercase."""
        normalized = normalize_stage_data(DiscoveryStage.REQUIREMENTS_SYNTHESIS, requirements_data)
        assert {r["priority"] for r in normalized["functionalRequirements"]} == {"high"}
        assert normalized["nonFunctionalRequirements"][0]["type"] == "performance"

    def test_only_supplied_keys_are_returned(self):
        """Defaults are not filled in."""
        normalized = normalize_stage_data(DiscoveryStage.MARKET_RESEARCH, {"marketSize": "$1B"})
        assert normalized == {"marketSize": "$1B"}

    def test_snake_case_input_is_stored_camel_case(self):
        """snake_case keys are stored camelCase."""
        normalized = normalize_stage_data(
            DiscoveryStage.PROBLEM_DISCOVERY, {"problem_statement": "Retailers cannot sell online"}
        )
        assert normalized == {"problemStatement": "Retailers cannot sell online"}

    def test_unknown_keys_are_kept(self):
        """Extra keys survive normalization."""
        normalized = normalize_stage_data(DiscoveryStage.PROBLEM_DISCOVERY, {"notes": "from workshop"})
        assert normalized == {"notes": "from workshop"}

    def test_complexity_levels_are_normalized(self, technical_data):
        """Complexity levels are lowercased."""
        normalized = normalize_stage_data(DiscoveryStage.TECHNICAL_FEASIBILITY, technical_data)
        assert normalized["complexityAssessment"] == {"overall": "medium"}

    def test_invalid_priority_names_the_field(self):
        """Errors name the indexed field path."""
        with pytest.raises(DiscoveryValidationError) as exc_info:
            normalize_stage_data(
                DiscoveryStage.REQUIREMENTS_SYNTHESIS,
                {"functionalRequirements": [{"id": "FR-1", "title": "t", "description": "d", "priority": "urgent"}]},
            )
        assert exc_info.value.code == "validation-error"
        assert exc_info.value.fields == ["functionalRequirements.0.priority"]

    def test_short_problem_statement_is_rejected(self):
        """A short problem statement fails."""
        with pytest.raises(DiscoveryValidationError) as exc_info:
            normalize_stage_data(DiscoveryStage.PROBLEM_DISCOVERY, {"problemStatement": "short"})
        assert exc_info.value.fields == ["problemStatement"]

    def test_dependency_from_alias(self):
        """Dependencies use the from alias."""
        normalized = normalize_stage_data(
            DiscoveryStage.REQUIREMENTS_SYNTHESIS,
            {"dependencies": [{"from": "FR-2", "to": "FR-1", "type": "Depends-On"}]},
        )
        assert normalized["dependencies"] == [{"from": "FR-2", "to": "FR-1", "type": "depends-on"}]


class TestSession:
    """Test the DiscoverySession model."""

    def test_valid_session(self):
        """A well-formed session validates."""
        session = DiscoverySession(**session_kwargs())
        assert session.is_stage_completed(DiscoveryStage.PROBLEM_DISCOVERY) is False
        assert session.stage_data(DiscoveryStage.MARKET_RESEARCH) == {}

    def test_session_id_must_be_uuid(self):
        """Session ids must be UUIDs."""
        with pytest.raises(ValidationError):
            DiscoverySession(**session_kwargs(session_id="not-a-uuid"))

    @pytest.mark.parametrize("name", ["A", "x" * 101, "Bad/Name", "Shop!"])
    def test_project_name_rules(self, name):
        """Project names obey length and character rules."""
        with pytest.raises(ValidationError):
            DiscoverySession(**session_kwargs(project_name=name))

    def test_every_stage_needs_progress(self):
        """Every stage needs a progress entry."""
        progress = {stage: StageProgress() for stage in STAGE_ORDER[:-1]}
        with pytest.raises(ValidationError, match="prd-generation"):
            DiscoverySession(**session_kwargs(progress=progress))

    def test_completed_at_required_for_completed_stage(self):
        """completedAt is set exactly for completed stages."""
        with pytest.raises(ValidationError):
            StageProgress(status=StageStatus.COMPLETED)
        with pytest.raises(ValidationError):
            StageProgress(status=StageStatus.IN_PROGRESS, completed_at=NOW)

    def test_completion_score_bounds(self):
        """Scores above 100 are rejected."""
        with pytest.raises(ValidationError):
            StageProgress(completion_score=101)

    def test_stage_data_is_normalized_on_load(self):
        """Stored stage data is normalized when loaded."""
        progress = {stage: StageProgress() for stage in STAGE_ORDER}
        progress[DiscoveryStage.TECHNICAL_FEASIBILITY] = StageProgress(
            status=StageStatus.IN_PROGRESS,
            started_at=NOW,
            data={"complexityAssessment": {"overall": "HIGH"}},
        )
        session = DiscoverySession(**session_kwargs(progress=progress))
        assert session.stage_data(DiscoveryStage.TECHNICAL_FEASIBILITY) == {
            "complexityAssessment": {"overall": "high"}
        }


class TestResearch:
    """Test research records and buckets."""

    def test_query_length_limits(self):
        """Queries must be 3 to 200 characters."""
        with pytest.raises(ValidationError):
            ResearchQuery(query="ab", provider="tavily", timestamp=NOW)
        with pytest.raises(ValidationError):
            ResearchQuery(query="x" * 201, provider="tavily", timestamp=NOW)

    def test_query_is_frozen(self):
        """Research records are immutable."""
        query = ResearchQuery(query="market size", provider="tavily", timestamp=NOW)
        with pytest.raises(ValidationError):
            query.provider = "perplexity"

    def test_buckets(self):
        """Buckets resolve by name."""
        data = ResearchData()
        assert data.bucket(MARKET_ANALYSIS) == []
        assert data.bucket("unknownBucket") is None
        data.bucket(MARKET_ANALYSIS).append(ResearchQuery(query="market size", provider="tavily", timestamp=NOW))
        assert data.total() == 1
        assert len(data.market_analysis) == 1


class TestExtendedState:
    """Test the persisted state document."""

    def test_defaults(self):
        """A new document has version 0 and no session."""
        state = ExtendedState()
        assert state.current_tag == "master"
        assert state.discovery_session is None
        assert state.version == 0
        assert state.to_document() == {
            "currentTag": "master",
            "branchTagMapping": {},
            "migrationNoticeShown": False,
            "version": 0,
        }

    def test_sibling_keys_survive_round_trip(self):
        """Unknown top-level keys are preserved."""
        state = ExtendedState.model_validate({"currentTag": "feature-x", "tasksCache": {"count": 3}})
        document = state.to_document()
        assert document["currentTag"] == "feature-x"
        assert document["tasksCache"] == {"count": 3}

    def test_session_serializes_camel_case(self):
        """Documents serialize with camelCase keys."""
        session = DiscoverySession(**session_kwargs())
        document = ExtendedState(discovery_session=session).to_document()
        stored = document["discoverySession"]
        assert stored["projectName"] == "E-commerce Platform"
        assert set(stored["progress"]) == {stage.value for stage in STAGE_ORDER}
        assert stored["progress"]["problem-discovery"]["status"] == "not-started"
        assert "researchData" in stored


class TestValidationErrorFields:
    """Test validation_error_fields."""

    def test_snake_case_locations_become_camel_case(self):
        """snake_case input reports camelCase paths."""
        with pytest.raises(ValidationError) as exc_info:
            DiscoverySession(**session_kwargs(project_name="x"))
        assert validation_error_fields(exc_info.value) == ["projectName"]

    def test_camel_case_locations_are_kept(self):
        """camelCase input reports the same paths."""
        payload = session_kwargs()
        payload.pop("project_name")
        payload["projectName"] = "x"
        with pytest.raises(ValidationError) as exc_info:
            DiscoverySession.model_validate(payload)
        assert validation_error_fields(exc_info.value) == ["projectName"]

    def test_prefix_and_indexes(self):
        """Paths include list indexes and the prefix."""
        with pytest.raises(ValidationError) as exc_info:
            RequirementsSynthesisData.model_validate(
                {"functional_requirements": [{"id": "FR-1", "title": "t", "description": "d", "priority": "urgent"}]}
            )
        fields = validation_error_fields(exc_info.value, prefix="data")
        assert fields == ["data.functionalRequirements.0.priority"]
