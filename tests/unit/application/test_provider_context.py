"""Tests for ProviderContextResolver tier order."""

from unittest.mock import MagicMock

import pytest

from council.application.provider_context import ProviderContextResolver
from council.application.run_state import RunState
from council.application.workflow_compiler import WorkflowCompiler
from council.domain.models.results import BatchResult, ProviderOutput, StepResult
from council.domain.models.workflow_request import RequestType, ResolvedContext, WorkflowRequest


@pytest.fixture
def run() -> RunState:
    request = WorkflowRequest(
        type=RequestType.INITIALIZE, session_id="s1", user_message="q", providers=["claude"]
    )
    context = ResolvedContext(type=RequestType.INITIALIZE)
    workflow = WorkflowCompiler(clock=lambda: 1000).compile(request, context)
    return RunState(workflow=workflow, request=request, resolved_context=context)


class TestProviderContextResolver:
    """The first tier with a context wins."""

    def test_in_run_cache_wins(self, run: RunState) -> None:
        run.provider_contexts["claude"] = {"conv": "cache"}
        run.historical_contexts["claude"] = {"conv": "history"}

        assert ProviderContextResolver().resolve("claude", run) == {"conv": "cache"}

    def test_historical_context(self, run: RunState) -> None:
        run.historical_contexts["claude"] = {"conv": "history"}

        assert ProviderContextResolver().resolve("claude", run) == {"conv": "history"}

    def test_linked_batch_step_meta(self, run: RunState) -> None:
        run.step_results["batch-1000"] = StepResult.completed(
            BatchResult(results={"claude": ProviderOutput(provider_id="claude", text="A", meta={"conv": "linked"})})
        )

        resolver = ProviderContextResolver()

        assert resolver.resolve("claude", run, "batch-1000") == {"conv": "linked"}
        assert resolver.resolve("claude", run) is None

    def test_storage_fallback(self, run: RunState) -> None:
        persistence = MagicMock()
        persistence.get_provider_contexts.return_value = {"claude": {"conv": "stored"}}

        assert ProviderContextResolver(persistence).resolve("claude", run) == {"conv": "stored"}
        persistence.get_provider_contexts.assert_called_once_with("s1")

    def test_storage_errors_resolve_to_none(self, run: RunState) -> None:
        persistence = MagicMock()
        persistence.get_provider_contexts.side_effect = OSError("disk")

        assert ProviderContextResolver(persistence).resolve("claude", run) is None

    def test_nothing_known(self, run: RunState) -> None:
        assert ProviderContextResolver().resolve("gemini", run) is None
