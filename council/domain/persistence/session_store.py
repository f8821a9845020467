import json
import logging
import secrets
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from council.domain.constants import (
    DEFAULT_SESSIONS_ROOT,
    DEFAULT_THREAD_ID,
    SESSION_FILENAME,
    SESSION_TEMP_SUFFIX,
)
from council.domain.models.session import (
    ProviderResponseRecord,
    SessionRecord,
    TurnRecord,
    TurnRole,
)
from council.domain.models.workflow_request import RequestType, ResolvedContext, WorkflowRequest
from council.domain.persistence.collaborator import PersistResult

logger = logging.getLogger(__name__)

# Result keys written by the turn builder, mapped to stored response types
RESULT_GROUPS: dict[str, str] = {
    "batch_outputs": "batch",
    "mapping_outputs": "mapping",
    "synthesis_outputs": "synthesis",
    "refiner_outputs": "refiner",
    "antagonist_outputs": "antagonist",
    "understand_outputs": "understand",
    "gauntlet_outputs": "gauntlet",
}

_TITLE_LENGTH = 60


def _new_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(3)}"


class SessionStore:
    """JSON-file persistence of sessions, turns and provider responses.

    One directory per session holding a single ``session.json``; every
    write goes to a temp file first and is then swapped in.
    """

    def __init__(self, sessions_root: Path | None = None):
        """
        Initialize the session store.

        Args:
            sessions_root: Root directory for all sessions (default: .council/sessions)
        """
        self.sessions_root = sessions_root or DEFAULT_SESSIONS_ROOT
        self.sessions_root.mkdir(parents=True, exist_ok=True)

    # ========================================================================
    # Session files
    # ========================================================================

    def save(self, record: SessionRecord) -> Path:
        """
        Save a session record to session.json

        Returns:
            Path to the saved session.json file
        """
        session_dir = self.sessions_root / record.session_id
        session_dir.mkdir(parents=True, exist_ok=True)

        session_file = session_dir / SESSION_FILENAME
        temp_file = session_file.with_suffix(SESSION_TEMP_SUFFIX)

        record.updated_at = datetime.now(timezone.utc)
        data = record.model_dump(mode="json")

        with open(temp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        temp_file.replace(session_file)

        return session_file

    def load(self, session_id: str) -> SessionRecord:
        """
        Load a session record from session.json

        Raises:
            FileNotFoundError: If session doesn't exist
            ValueError: If session.json is invalid
        """
        session_file = self.sessions_root / session_id / SESSION_FILENAME

        if not session_file.exists():
            raise FileNotFoundError(
                f"Session '{session_id}' not found at {session_file}"
            )

        with open(session_file, "r", encoding="utf-8") as f:
            data = json.load(f)

        try:
            return SessionRecord.model_validate(data)
        except Exception as e:
            raise ValueError(f"Invalid session data: {e}") from e

    def exists(self, session_id: str) -> bool:
        return (self.sessions_root / session_id / SESSION_FILENAME).exists()

    def list_sessions(self) -> list[str]:
        if not self.sessions_root.exists():
            return []

        sessions = []
        for session_dir in self.sessions_root.iterdir():
            if session_dir.is_dir() and (session_dir / SESSION_FILENAME).exists():
                sessions.append(session_dir.name)

        return sorted(sessions)

    def delete(self, session_id: str) -> None:
        """
        Delete a session and all its files.

        Raises:
            FileNotFoundError: If session doesn't exist
        """
        session_dir = self.sessions_root / session_id

        if not session_dir.exists():
            raise FileNotFoundError(f"Session '{session_id}' not found")

        shutil.rmtree(session_dir)

    def _load_or_create(self, session_id: str) -> SessionRecord:
        if self.exists(session_id):
            return self.load(session_id)
        return SessionRecord(session_id=session_id)

    # ========================================================================
    # Provider responses
    # ========================================================================

    def upsert_provider_response(
        self,
        session_id: str,
        turn_id: str,
        provider_id: str,
        response_type: str,
        index: int,
        data: dict[str, Any],
    ) -> None:
        """Insert or replace one provider response.

        A second call with the same key replaces the stored entry and keeps
        its original ``created_at``.

        Args:
            data: ``text``, ``status`` and ``meta`` of the response
        """
        record = self._load_or_create(session_id)
        self._upsert(record, turn_id, provider_id, response_type, index, data)
        self.save(record)

    def _upsert(
        self,
        record: SessionRecord,
        turn_id: str,
        provider_id: str,
        response_type: str,
        index: int,
        data: dict[str, Any],
    ) -> None:
        incoming = ProviderResponseRecord(
            ai_turn_id=turn_id,
            provider_id=provider_id,
            response_type=response_type,
            response_index=index,
            text=data.get("text") or "",
            status=data.get("status") or "completed",
            meta=dict(data.get("meta") or {}),
        )
        for i, existing in enumerate(record.responses):
            if existing.key() == incoming.key():
                record.responses[i] = incoming.model_copy(
                    update={"created_at": existing.created_at}
                )
                logger.debug(f"Replaced response {incoming.key()} in session {record.session_id}")
                return
        record.responses.append(incoming)

    def _next_index(
        self, record: SessionRecord, turn_id: str, provider_id: str, response_type: str
    ) -> int:
        indices = [
            r.response_index
            for r in record.responses
            if r.ai_turn_id == turn_id
            and r.provider_id == provider_id
            and r.response_type == response_type
        ]
        return max(indices) + 1 if indices else 0

    # ========================================================================
    # Workflow results
    # ========================================================================

    def persist_workflow_result(
        self,
        request: WorkflowRequest,
        resolved_context: ResolvedContext | None,
        result: dict[str, Any],
    ) -> PersistResult:
        """Write a run's outputs and return canonical turn identifiers.

        Initialize and extend append a user turn and an AI turn; turn ids
        supplied by the client are kept. Recompute appends new response
        variants to the AI turn being re-derived.

        Raises:
            ValueError: If a recompute source turn cannot be found
        """
        session_id = request.session_id or result.get("session_id") or _new_id("session")
        record = self._load_or_create(session_id)

        if request.type == RequestType.RECOMPUTE:
            persisted = self._persist_recompute(record, request, resolved_context, result)
        else:
            persisted = self._persist_new_turn(record, request, resolved_context, result)

        self.save(record)
        logger.info(
            f"Persisted {request.type.value} result: session={persisted.session_id} "
            f"ai_turn={persisted.ai_turn_id}"
        )
        return persisted

    def _persist_new_turn(
        self,
        record: SessionRecord,
        request: WorkflowRequest,
        resolved_context: ResolvedContext | None,
        result: dict[str, Any],
    ) -> PersistResult:
        user_turn_id = request.client_user_turn_id or _new_id("user")
        ai_turn_id = request.client_ai_turn_id or _new_id("ai")
        thread_id = result.get("thread_id") or DEFAULT_THREAD_ID

        if not record.title and request.user_message:
            record.title = request.user_message.strip()[:_TITLE_LENGTH]

        existing_ids = {t.id for t in record.turns}
        sequence = len(record.turns)
        if user_turn_id not in existing_ids:
            record.turns.append(
                TurnRecord(
                    id=user_turn_id,
                    role=TurnRole.USER,
                    thread_id=thread_id,
                    sequence=sequence,
                    text=request.user_message,
                )
            )
            sequence += 1

        ai_meta = dict(result.get("meta") or {})
        if resolved_context is not None and resolved_context.last_turn_id:
            ai_meta.setdefault("previous_turn_id", resolved_context.last_turn_id)
        ai_turn = next((t for t in record.turns if t.id == ai_turn_id), None)
        if ai_turn is None:
            record.turns.append(
                TurnRecord(
                    id=ai_turn_id,
                    role=TurnRole.AI,
                    thread_id=thread_id,
                    sequence=sequence,
                    user_turn_id=user_turn_id,
                    meta=ai_meta,
                )
            )
        else:
            ai_turn.meta = {**ai_turn.meta, **ai_meta}
            ai_turn.updated_at = datetime.now(timezone.utc)

        for group, response_type in RESULT_GROUPS.items():
            for provider_id, data in (result.get(group) or {}).items():
                self._upsert(record, ai_turn_id, provider_id, response_type, 0, data)

        self._update_provider_contexts(record, result)
        return PersistResult(
            user_turn_id=user_turn_id, ai_turn_id=ai_turn_id, session_id=record.session_id
        )

    def _persist_recompute(
        self,
        record: SessionRecord,
        request: WorkflowRequest,
        resolved_context: ResolvedContext | None,
        result: dict[str, Any],
    ) -> PersistResult:
        source_turn_id = request.source_turn_id or (
            resolved_context.source_turn_id if resolved_context else None
        )
        ai_turn = self._resolve_ai_turn(record, source_turn_id)
        if ai_turn is None:
            raise ValueError(
                f"Recompute source turn '{source_turn_id}' not found in session '{record.session_id}'"
            )

        for group, response_type in RESULT_GROUPS.items():
            for provider_id, data in (result.get(group) or {}).items():
                index = self._next_index(record, ai_turn.id, provider_id, response_type)
                self._upsert(record, ai_turn.id, provider_id, response_type, index, data)

        self._update_provider_contexts(record, result)
        return PersistResult(
            user_turn_id=ai_turn.user_turn_id or "",
            ai_turn_id=ai_turn.id,
            session_id=record.session_id,
        )

    def _update_provider_contexts(self, record: SessionRecord, result: dict[str, Any]) -> None:
        for provider_id, data in (result.get("batch_outputs") or {}).items():
            meta = data.get("meta") or {}
            if data.get("status") == "completed" and meta:
                record.provider_contexts[provider_id] = dict(meta)

    def update_provider_contexts(
        self, session_id: str, contexts: dict[str, dict[str, Any]]
    ) -> None:
        """Merge continuation blobs into the session's latest-known contexts."""
        record = self._load_or_create(session_id)
        record.provider_contexts.update({pid: dict(meta) for pid, meta in contexts.items()})
        self.save(record)

    # ========================================================================
    # Lookups
    # ========================================================================

    def get_provider_contexts(self, session_id: str) -> dict[str, dict[str, Any]]:
        if not self.exists(session_id):
            return {}
        return dict(self.load(session_id).provider_contexts)

    def get_turn(self, session_id: str, turn_id: str) -> TurnRecord | None:
        if not self.exists(session_id):
            return None
        return next((t for t in self.load(session_id).turns if t.id == turn_id), None)

    def get_next_turn(self, session_id: str, turn_id: str) -> TurnRecord | None:
        """Turn that immediately follows ``turn_id`` in sequence order."""
        if not self.exists(session_id):
            return None
        turns = sorted(self.load(session_id).turns, key=lambda t: t.sequence)
        for i, turn in enumerate(turns):
            if turn.id == turn_id:
                return turns[i + 1] if i + 1 < len(turns) else None
        return None

    def get_responses_by_turn_id(
        self, session_id: str, turn_id: str, response_type: str | None = None
    ) -> list[ProviderResponseRecord]:
        """Responses stored for an AI turn, optionally of one type.

        A user turn id resolves to the AI turn that answered it.
        """
        if not self.exists(session_id):
            return []
        record = self.load(session_id)
        ai_turn = self._resolve_ai_turn(record, turn_id)
        if ai_turn is None:
            return []
        return [
            r
            for r in record.responses
            if r.ai_turn_id == ai_turn.id
            and (response_type is None or r.response_type == response_type)
        ]

    def _resolve_ai_turn(self, record: SessionRecord, turn_id: str | None) -> TurnRecord | None:
        if not turn_id:
            return None
        turn = next((t for t in record.turns if t.id == turn_id), None)
        if turn is None:
            return None
        if turn.role == TurnRole.AI:
            return turn
        return next(
            (t for t in record.turns if t.role == TurnRole.AI and t.user_turn_id == turn.id),
            None,
        )
