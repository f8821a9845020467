"""Tests for SessionStore persistence of turns and provider responses."""

import json
from pathlib import Path

import pytest

from council.domain.models.session import TurnRole
from council.domain.models.workflow_request import RequestType, ResolvedContext, WorkflowRequest
from council.domain.persistence.session_store import SessionStore


def _initialize(store: SessionStore, session_id: str = "s1") -> tuple[str, str]:
    request = WorkflowRequest(
        type=RequestType.INITIALIZE,
        session_id=session_id,
        user_message="Which database should we use?",
        providers=["claude", "gemini"],
        client_user_turn_id="user-1",
        client_ai_turn_id="ai-1",
    )
    result = {
        "session_id": session_id,
        "thread_id": "default-thread",
        "meta": {"workflow_id": "wf-1"},
        "batch_outputs": {
            "claude": {"provider_id": "claude", "text": "Postgres", "status": "completed", "meta": {"conv": "c1"}},
            "gemini": {"provider_id": "gemini", "text": "", "status": "error", "meta": {"error": "timeout"}},
        },
        "mapping_outputs": {
            "claude": {"provider_id": "claude", "text": "narrative", "status": "completed", "meta": {}},
        },
    }
    persisted = store.persist_workflow_result(request, None, result)
    return persisted.user_turn_id, persisted.ai_turn_id


class TestUpsertProviderResponse:
    """Tests for upsert idempotence."""

    def test_same_key_replaces(self, session_store: SessionStore) -> None:
        session_store.upsert_provider_response("s1", "ai-1", "claude", "synthesis", 0, {"text": "v1"})
        first = session_store.load("s1").responses[0]

        session_store.upsert_provider_response("s1", "ai-1", "claude", "synthesis", 0, {"text": "v2"})

        responses = session_store.load("s1").responses
        assert len(responses) == 1
        assert responses[0].text == "v2"
        assert responses[0].created_at == first.created_at

    def test_different_index_appends(self, session_store: SessionStore) -> None:
        session_store.upsert_provider_response("s1", "ai-1", "claude", "synthesis", 0, {"text": "v1"})
        session_store.upsert_provider_response("s1", "ai-1", "claude", "synthesis", 1, {"text": "v2"})

        assert [r.response_index for r in session_store.load("s1").responses] == [0, 1]


class TestPersistWorkflowResult:
    """Tests for persist_workflow_result()."""

    def test_initialize_creates_turns_and_responses(self, session_store: SessionStore) -> None:
        user_turn_id, ai_turn_id = _initialize(session_store)

        record = session_store.load("s1")
        assert (user_turn_id, ai_turn_id) == ("user-1", "ai-1")
        assert [t.role for t in record.turns] == [TurnRole.USER, TurnRole.AI]
        assert record.turns[1].user_turn_id == "user-1"
        assert record.turns[1].meta["workflow_id"] == "wf-1"
        assert record.title == "Which database should we use?"
        assert len(record.responses) == 3

    def test_only_completed_batch_meta_becomes_context(self, session_store: SessionStore) -> None:
        _initialize(session_store)
        assert session_store.get_provider_contexts("s1") == {"claude": {"conv": "c1"}}

    def test_generates_ids_when_client_gives_none(self, session_store: SessionStore) -> None:
        request = WorkflowRequest(type=RequestType.INITIALIZE, user_message="hi", providers=["claude"])

        persisted = session_store.persist_workflow_result(request, None, {"session_id": "s9"})

        assert persisted.session_id == "s9"
        assert persisted.user_turn_id.startswith("user-")
        assert persisted.ai_turn_id.startswith("ai-")

    def test_extend_records_previous_turn(self, session_store: SessionStore) -> None:
        _initialize(session_store)
        request = WorkflowRequest(
            type=RequestType.EXTEND, session_id="s1", user_message="And for caching?", providers=["claude"]
        )
        context = ResolvedContext(
            type=RequestType.EXTEND, session_id="s1", last_turn_id="ai-1", provider_contexts={}
        )

        persisted = session_store.persist_workflow_result(request, context, {"session_id": "s1"})

        record = session_store.load("s1")
        ai_turn = next(t for t in record.turns if t.id == persisted.ai_turn_id)
        assert ai_turn.meta["previous_turn_id"] == "ai-1"
        assert [t.sequence for t in record.turns] == [0, 1, 2, 3]

    def test_recompute_appends_variant(self, session_store: SessionStore) -> None:
        _initialize(session_store)
        request = WorkflowRequest(
            type=RequestType.RECOMPUTE,
            session_id="s1",
            source_turn_id="user-1",
            step_type="mapping",
            target_provider="gemini",
        )
        result = {
            "mapping_outputs": {
                "gemini": {"provider_id": "gemini", "text": "new map", "status": "completed", "meta": {}}
            }
        }

        persisted = session_store.persist_workflow_result(request, None, result)

        assert persisted.ai_turn_id == "ai-1"
        assert persisted.user_turn_id == "user-1"
        mappings = session_store.get_responses_by_turn_id("s1", "ai-1", "mapping")
        assert {(r.provider_id, r.response_index) for r in mappings} == {("claude", 0), ("gemini", 0)}

        session_store.persist_workflow_result(request, None, result)
        indices = [
            r.response_index
            for r in session_store.get_responses_by_turn_id("s1", "ai-1", "mapping")
            if r.provider_id == "gemini"
        ]
        assert indices == [0, 1]

    def test_recompute_unknown_turn_raises(self, session_store: SessionStore) -> None:
        _initialize(session_store)
        request = WorkflowRequest(
            type=RequestType.RECOMPUTE,
            session_id="s1",
            source_turn_id="missing",
            step_type="batch",
            target_provider="claude",
        )

        with pytest.raises(ValueError, match="not found"):
            session_store.persist_workflow_result(request, None, {})


class TestLookups:
    def test_responses_by_user_turn_resolve_ai_turn(self, session_store: SessionStore) -> None:
        _initialize(session_store)

        batch = session_store.get_responses_by_turn_id("s1", "user-1", "batch")

        assert {r.provider_id for r in batch} == {"claude", "gemini"}

    def test_unknown_session_lookups_are_empty(self, session_store: SessionStore) -> None:
        assert session_store.get_responses_by_turn_id("nope", "t") == []
        assert session_store.get_provider_contexts("nope") == {}
        assert session_store.get_turn("nope", "t") is None

    def test_get_next_turn(self, session_store: SessionStore) -> None:
        _initialize(session_store)
        assert session_store.get_next_turn("s1", "user-1").id == "ai-1"
        assert session_store.get_next_turn("s1", "ai-1") is None

    def test_update_provider_contexts_merges(self, session_store: SessionStore) -> None:
        _initialize(session_store)

        session_store.update_provider_contexts("s1", {"gemini": {"conv": "g1"}})

        assert session_store.get_provider_contexts("s1") == {
            "claude": {"conv": "c1"},
            "gemini": {"conv": "g1"},
        }


class TestSessionFiles:
    def test_load_missing_raises(self, session_store: SessionStore) -> None:
        with pytest.raises(FileNotFoundError):
            session_store.load("missing")

    def test_load_invalid_raises_value_error(self, session_store: SessionStore, sessions_root: Path) -> None:
        session_dir = sessions_root / "bad"
        session_dir.mkdir(parents=True)
        (session_dir / "session.json").write_text(json.dumps({"turns": "nope"}), encoding="utf-8")

        with pytest.raises(ValueError, match="Invalid session data"):
            session_store.load("bad")

    def test_list_and_delete(self, session_store: SessionStore) -> None:
        _initialize(session_store, "s1")
        _initialize(session_store, "s2")

        assert session_store.list_sessions() == ["s1", "s2"]
        session_store.delete("s1")
        assert session_store.list_sessions() == ["s2"]

    def test_delete_missing_raises(self, session_store: SessionStore) -> None:
        with pytest.raises(FileNotFoundError):
            session_store.delete("missing")
