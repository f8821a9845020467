"""Contract between the engine and durable storage."""

from dataclasses import dataclass
from typing import Any, Protocol

from council.domain.models.workflow_request import ResolvedContext, WorkflowRequest


@dataclass(frozen=True, slots=True)
class PersistResult:
    """Canonical identifiers assigned by storage."""

    user_turn_id: str
    ai_turn_id: str
    session_id: str


class PersistenceCollaborator(Protocol):
    def upsert_provider_response(
        self,
        session_id: str,
        turn_id: str,
        provider_id: str,
        response_type: str,
        index: int,
        data: dict[str, Any],
    ) -> None:
        ...

    def persist_workflow_result(
        self,
        request: WorkflowRequest,
        resolved_context: ResolvedContext | None,
        result: dict[str, Any],
    ) -> PersistResult:
        ...

    def get_provider_contexts(self, session_id: str) -> dict[str, dict[str, Any]]:
        ...

    def get_responses_by_turn_id(
        self, session_id: str, turn_id: str, response_type: str | None = None
    ) -> list[Any]:
        ...

    def update_provider_contexts(
        self, session_id: str, contexts: dict[str, dict[str, Any]]
    ) -> None:
        ...
