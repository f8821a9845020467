import json
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from council.domain.events.emitter import WorkflowEventEmitter
from council.domain.events.event import WorkflowEvent
from council.domain.events.event_types import WorkflowEventType
from council.domain.persistence.session_store import SessionStore
from council.domain.providers.provider_factory import ProviderFactory
from tests.providers.fake_ai_provider import FakeAIProvider


@pytest.fixture
def sessions_root(tmp_path: Path) -> Path:
    """Isolated sessions root for tests.

    Tests should not write into the real repo's .council/sessions directory.
    """
    return tmp_path / "sessions"


@pytest.fixture
def session_store(sessions_root: Path) -> SessionStore:
    return SessionStore(sessions_root=sessions_root)


@pytest.fixture
def observer() -> MagicMock:
    """Mock observer; inspect with ``events_of(observer, ...)``."""
    return MagicMock()


@pytest.fixture
def emitter(observer: MagicMock) -> WorkflowEventEmitter:
    emitter = WorkflowEventEmitter()
    emitter.subscribe(observer)
    return emitter


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep config lookups away from the developer's home directory."""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture(autouse=True)
def _register_test_providers():
    """Register fake providers used in tests with proper cleanup.

    Restores the registry afterward to prevent test pollution.
    """
    original_registry = dict(ProviderFactory._registry)

    for key in ["fake", "claude", "gemini", "chatgpt"]:
        if key not in ProviderFactory._registry:
            ProviderFactory.register(key, FakeAIProvider)

    yield

    ProviderFactory._registry.clear()
    ProviderFactory._registry.update(original_registry)


def events_of(observer: MagicMock, event_type: WorkflowEventType | None = None) -> list[WorkflowEvent]:
    """Events received by a mock observer, optionally of one type."""
    events = [call[0][0] for call in observer.on_event.call_args_list]
    if event_type is None:
        return events
    return [e for e in events if e.event_type == event_type]


def mapping_text(
    claims: list[dict[str, Any]],
    edges: list[dict[str, Any]] | None = None,
    narrative: str = "The council mostly agrees.",
    options: list[str] | None = None,
) -> str:
    """Mapper output in the narrative / options / topology layout."""
    parts = [narrative]
    if options:
        parts.append("===ALL_AVAILABLE_OPTIONS===")
        parts.extend(f"- **{title}**: described" for title in options)
    parts.append("===GRAPH_TOPOLOGY===")
    parts.append(json.dumps({"claims": claims, "edges": edges or []}))
    return "\n".join(parts)


def claim(claim_id: str, supporters: list[Any], **extra: Any) -> dict[str, Any]:
    return {"id": claim_id, "label": f"Claim {claim_id}", "text": "...", "supporters": supporters, **extra}
