"""PRDAssemblerFake: deterministic test double for the PRDAssembler protocol.

Scenarios:
- full: every canonical section, filled from session data
- minimal: a one-line document
- failing: assemble raises RuntimeError
"""

from prd_discovery.domain.stages import DiscoveryStage
from prd_discovery.schemas.discovery import DiscoverySession
from prd_discovery.services.prd_service import AssembledPRD, PRDGenerationOptions


class PRDAssemblerFake:
    VALID_SCENARIOS = {"full", "minimal", "failing"}

    def __init__(self, scenario: str = "full"):
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}")
        self.scenario = scenario
        self.calls: list[str] = []

    async def assemble(self, session: DiscoverySession, options: PRDGenerationOptions) -> AssembledPRD:
        self.calls.append(session.session_id)
        if self.scenario == "failing":
            raise RuntimeError("assembler unavailable")
        if self.scenario == "minimal":
            return AssembledPRD(content=f"# {session.project_name}\n\nThis is an app.", template="minimal")
        return AssembledPRD(
            content=render_full_prd(session),
            structure={"sections": [title for title, _ in _sections(session)]},
            template=options.template_type or "standard",
        )


def _bullets(items: list[str]) -> str:
    return "\n".join(f"- {item}" for item in items) or "- TBD"


def _sections(session: DiscoverySession) -> list[tuple[str, str]]:
    problem = session.stage_data(DiscoveryStage.PROBLEM_DISCOVERY)
    market = session.stage_data(DiscoveryStage.MARKET_RESEARCH)
    technical = session.stage_data(DiscoveryStage.TECHNICAL_FEASIBILITY)
    requirements = session.stage_data(DiscoveryStage.REQUIREMENTS_SYNTHESIS)

    stack = technical.get("recommendedTechStack") or {}
    stack_items = [item for layer in stack.values() if isinstance(layer, list) for item in layer]
    architecture = technical.get("architecture") or {}

    functional = [
        f"{r['id']}: {r['title']} - the system must {r['description']}"
        for r in requirements.get("functionalRequirements") or []
    ]
    non_functional = [
        f"{r['id']}: {r['title']} - the system should {r['description']}"
        for r in requirements.get("nonFunctionalRequirements") or []
    ]
    competitors = [c["name"] for c in market.get("competitorAnalysis") or []]

    return [
        ("Overview", f"{session.project_name} will serve {problem.get('targetAudience', 'its users')}."),
        ("Problem Statement", problem.get("problemStatement", "")),
        ("Solution and Features", _bullets(problem.get("successCriteria") or [])),
        ("Market Analysis", "\n".join([
            f"Market size: {market.get('marketSize', 'unknown')}. Customer segment growth drives revenue opportunity.",
            "Competitor landscape:",
            _bullets(competitors),
            "Business model: subscription pricing with a clear value proposition.",
        ])),
        ("Technical Approach", "\n".join([
            f"Architecture: {architecture.get('pattern', 'TBD')} with API integration, database, framework, "
            "infrastructure, deployment and security concerns addressed.",
            "Tech stack:",
            _bullets(stack_items),
            "Performance, scalability, latency, availability and throughput targets are defined.",
        ])),
        ("Functional Requirements", _bullets(functional)),
        ("Non-Functional Requirements", _bullets(non_functional)),
        ("User Stories", "As a shopper, I want to check out quickly.\n\nAcceptance criteria:\n- Checkout completes in one page"),
        ("Success Metrics", "Each KPI must be tracked weekly and should be reviewed monthly."),
    ]


def render_full_prd(session: DiscoverySession) -> str:
    parts = [f"# {session.project_name} PRD"]
    for title, body in _sections(session):
        parts.append(f"## {title}\n\n{body}")
    return "\n\n".join(parts) + "\n"
