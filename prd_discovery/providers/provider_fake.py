"""ProviderFake: scenario-based test double for native research providers.

Implements the native method names of all three providers so one fake can be
registered under any of them. Scenarios:
- happy_path: every call returns a canned result and records itself
- failure: every call raises
- unavailable: is_available returns False

Calls return instantly and are recorded on ``calls`` for assertions.
"""

from typing import Any


class ProviderFake:
    VALID_SCENARIOS = {"happy_path", "failure", "unavailable"}

    def __init__(self, scenario: str = "happy_path", label: str = "fake"):
        """Initialize ProviderFake with a named scenario.

        Raises:
            ValueError: If scenario is not recognized
        """
        if scenario not in self.VALID_SCENARIOS:
            raise ValueError(f"Unknown scenario: {scenario}. Valid scenarios: {self.VALID_SCENARIOS}")
        self.scenario = scenario
        self.label = label
        self.calls: list[tuple[str, tuple]] = []

    def _respond(self, method: str, *args: Any) -> dict:
        self.calls.append((method, args))
        if self.scenario == "failure":
            raise RuntimeError(f"{self.label} {method} failed")
        return {"source": self.label, "method": method}

    async def is_available(self, api_key: str | None = None) -> bool:
        return self.scenario != "unavailable"

    # context7
    async def validate_technical_feasibility(self, technologies: list[str], query: str) -> dict:
        return self._respond("validate_technical_feasibility", technologies, query)

    async def get_architecture_recommendations(self, spec: dict) -> dict:
        return self._respond("get_architecture_recommendations", spec)

    def resolve_library_id(self, query: str) -> dict:
        return self._respond("resolve_library_id", query)

    # tavily
    async def research_market_opportunity(self, request: dict, options: dict) -> dict:
        return self._respond("research_market_opportunity", request, options)

    async def search(self, query: str, options: dict) -> dict:
        return self._respond("search", query, options)

    # perplexity
    async def generate_text(self, request: dict) -> dict:
        return self._respond("generate_text", request)
