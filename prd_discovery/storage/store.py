"""Session repository: one persisted state document per project.

Loading never fails the caller: a missing, unparsable or schema-invalid
document degrades to the default state and is logged. Saving validates the
whole document and enforces optimistic concurrency through ``version``.
"""

import json

import structlog
from pydantic import ValidationError

from prd_discovery.core.exceptions import ConcurrentModificationError, DiscoveryValidationError
from prd_discovery.schemas.discovery import DiscoverySession, ExtendedState, validation_error_fields
from prd_discovery.storage.backends import StateBackend

logger = structlog.get_logger(__name__)


def default_state() -> ExtendedState:
    """Empty document used when nothing valid is stored."""
    return ExtendedState()


class SessionStore:
    """Repository for one project's state document."""

    def __init__(self, backend: StateBackend, project_id: str):
        self.backend = backend
        self.project_id = project_id

    async def load_state(self) -> ExtendedState:
        raw = await self.backend.read(self.project_id)
        if raw is None:
            return default_state()

        try:
            return ExtendedState.model_validate(json.loads(raw))
        except ValueError as e:
            # json.JSONDecodeError and pydantic ValidationError are both ValueErrors
            logger.warning(
                "state_load_failed",
                project_id=self.project_id,
                error=str(e)[:500],
                error_type=type(e).__name__,
            )
            return default_state()

    async def load_session(self) -> DiscoverySession | None:
        state = await self.load_state()
        return state.discovery_session

    async def save_state(self, state: ExtendedState, expected_version: int | None = None) -> ExtendedState:
        """Validate and persist ``state``, bumping its version.

        Args:
            state: Document to write
            expected_version: Version the caller loaded; None skips the check

        Returns:
            The stored document with its new version

        Raises:
            ConcurrentModificationError: stored version differs from expected_version
            DiscoveryValidationError: the document fails schema validation
        """
        async with self.backend.locked(self.project_id):
            current = await self.load_state()
            if expected_version is not None and current.version != expected_version:
                raise ConcurrentModificationError(self.project_id, expected_version, current.version)

            document = state.to_document()
            document["version"] = current.version + 1
            try:
                stored = ExtendedState.model_validate(document)
            except ValidationError as e:
                fields = validation_error_fields(e)
                raise DiscoveryValidationError(f"Refusing to save invalid state: {', '.join(fields)}", fields) from e

            await self.backend.write(self.project_id, json.dumps(stored.to_document(), indent=2))

        logger.debug("state_saved", project_id=self.project_id, version=stored.version)
        return stored
