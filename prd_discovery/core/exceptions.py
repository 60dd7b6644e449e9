class DiscoveryError(Exception):
    """Base exception for the discovery workflow.

    Every subclass carries a stable ``code`` string that callers can match on
    without parsing the message.
    """

    code = "discovery-error"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class SessionNotFoundError(DiscoveryError):
    """Raised when no session with the requested id exists."""

    code = "session-not-found"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Discovery session not found: {session_id}", {"session_id": session_id})


class SessionExistsError(DiscoveryError):
    """Raised when creating a session while another one is still open."""

    code = "session-exists"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(
            f"An active discovery session already exists: {session_id}",
            {"session_id": session_id},
        )


class SessionExpiredError(DiscoveryError):
    """Raised when a session is older than the configured timeout."""

    code = "session-expired"

    def __init__(self, session_id: str, timeout_hours: int):
        self.session_id = session_id
        self.timeout_hours = timeout_hours
        super().__init__(
            f"Discovery session {session_id} expired after {timeout_hours} hours",
            {"session_id": session_id, "timeout_hours": timeout_hours},
        )


class SessionClosedError(DiscoveryError):
    """Raised when mutating a session that is paused, completed or cancelled."""

    code = "session-closed"

    def __init__(self, session_id: str, status: str):
        self.session_id = session_id
        self.status = status
        super().__init__(
            f"Discovery session {session_id} is {status}",
            {"session_id": session_id, "status": status},
        )


class InvalidStageError(DiscoveryError):
    """Raised when a stage name is not one of the canonical stages."""

    code = "invalid-stage"

    def __init__(self, stage: str):
        self.stage = stage
        super().__init__(f"Invalid discovery stage: {stage}", {"stage": stage})


class StageNotReadyError(DiscoveryError):
    """Raised when a stage transition is attempted out of order."""

    code = "stage-not-ready"

    def __init__(self, stage: str, status: str, reason: str):
        self.stage = stage
        self.status = status
        super().__init__(reason, {"stage": stage, "status": status})


class RequirementsIncompleteError(DiscoveryError):
    """Raised when PRD generation is requested before requirements are ready."""

    code = "requirements-incomplete"


class PRDAssemblyError(DiscoveryError):
    """Raised when the injected assembler fails to produce a document."""

    code = "prd-assembly-failed"

    def __init__(self, message: str, error_type: str):
        self.error_type = error_type
        super().__init__(f"PRD assembly failed: {message}", {"error_type": error_type})


class DiscoveryValidationError(DiscoveryError):
    """Raised when a payload fails schema or field-presence rules."""

    code = "validation-error"

    def __init__(self, message: str, fields: list[str]):
        self.fields = fields
        super().__init__(message, {"fields": fields})


class ConcurrentModificationError(DiscoveryError):
    """Raised when the stored state changed between load and save."""

    code = "concurrent-modification"

    def __init__(self, project_id: str, expected_version: int, actual_version: int):
        self.project_id = project_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"State for project {project_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            {
                "project_id": project_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


class LockTimeoutError(DiscoveryError):
    """Raised when a project lock cannot be acquired in time."""

    code = "lock-timeout"

    def __init__(self, project_id: str, waited_seconds: float):
        self.project_id = project_id
        super().__init__(
            f"Could not lock project {project_id} within {waited_seconds}s",
            {"project_id": project_id},
        )


class ProviderError(DiscoveryError):
    """Base class for research provider failures."""

    code = "research-failed"

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message, {"provider": provider})


class UnknownProviderError(ProviderError):
    """Raised when registering or routing to a provider the system does not know."""

    code = "unknown-provider"

    def __init__(self, provider: str):
        super().__init__(provider, f"Unknown research provider: {provider}")


class ProviderUnavailableError(ProviderError):
    """Raised when a provider cannot serve a request."""

    code = "provider-unavailable"


class ResearchFailedError(ProviderError):
    """Raised when every candidate provider failed for a query."""

    code = "research-failed"

    def __init__(self, query: str, attempts: list[dict]):
        self.query = query
        self.attempts = attempts
        providers = ", ".join(a["provider"] for a in attempts) or "none"
        super().__init__(providers, f"All research providers failed for query '{query}' (tried: {providers})")
        self.details["attempts"] = attempts
