"""Tests for StepExecutor against a scripted fan-out."""

import asyncio
from unittest.mock import MagicMock

import pytest

from council.application.prompt_builder import TemplatePromptBuilder
from council.application.response_processing import DefaultResponseProcessor
from council.application.run_state import RunState
from council.application.step_executor import StepExecutor
from council.application.streaming_manager import StreamingManager
from council.application.workflow_compiler import WorkflowCompiler
from council.domain.errors import (
    AllProvidersFailedError,
    InputTooLongError,
    MultiProviderAuthError,
    ProviderError,
    SourceResolutionError,
)
from council.domain.events.emitter import WorkflowEventEmitter
from council.domain.events.event_types import WorkflowEventType
from council.domain.models.results import BatchResult, ErrorType, ProviderOutput, StepResult
from council.domain.models.workflow_request import RequestType, ResolvedContext, StepType, WorkflowRequest
from council.domain.persistence.deferred import DeferredPersistence
from council.domain.providers.error_classifier import classify_error
from council.domain.providers.health_tracker import HealthTracker
from council.domain.providers.provider_limits import ProviderLimit, ProviderLimits
from tests.conftest import claim, events_of, mapping_text
from tests.providers.fake_fanout import Script, ScriptedFanout

BATCH = "batch-1000"
MAPPING = "mapping-claude-1000"
SYNTHESIS = "synthesis-claude-1000"
REFINER = "refiner-gemini-1000"
UNDERSTAND = "understand-claude-1000"


def _run(**overrides) -> RunState:
    fields = {
        "type": RequestType.INITIALIZE,
        "session_id": "s1",
        "user_message": "Which database should we use?",
        "providers": ["claude", "gemini"],
        "include_mapping": True,
        "synthesizer": "claude",
        "refiner": "gemini",
        "understand": "claude",
        "client_ai_turn_id": "ai-1",
    }
    fields.update(overrides)
    request = WorkflowRequest(**fields)
    context = ResolvedContext(type=RequestType.INITIALIZE)
    workflow = WorkflowCompiler(clock=lambda: 1000).compile(request, context)
    return RunState(workflow=workflow, request=request, resolved_context=context)


def _executor(
    fanout: ScriptedFanout,
    emitter: WorkflowEventEmitter,
    *,
    limits: ProviderLimits | None = None,
    health: HealthTracker | None = None,
    **kwargs,
) -> StepExecutor:
    return StepExecutor(
        fanout,
        health or HealthTracker(),
        StreamingManager(event_emitter=emitter),
        limits=limits or ProviderLimits(),
        event_emitter=emitter,
        response_processor=DefaultResponseProcessor(),
        prompt_builder=TemplatePromptBuilder(),
        **kwargs,
    )


def _with_batch(run: RunState, **texts: str) -> RunState:
    results = {
        pid: ProviderOutput(provider_id=pid, text=text, meta={"conv": f"{pid}-conv"})
        for pid, text in texts.items()
    }
    run.step_results[BATCH] = StepResult.completed(BatchResult(results=results))
    return run


def _step(run: RunState, step_type: StepType):
    return run.workflow.steps_of(step_type)[0]


TOPOLOGY_TEXT = mapping_text(
    [claim("a", [1, 2]), claim("b", [1])],
    [{"from": "a", "to": "b", "type": "supports"}],
    options=["Use Postgres"],
)


class TestBatchStep:
    """Tests for execute_batch_step()."""

    def test_partial_failure_keeps_successful_outputs(
        self, emitter: WorkflowEventEmitter, observer: MagicMock
    ) -> None:
        fanout = ScriptedFanout(
            batch={"claude": Script("Postgres"), "gemini": Script(error=TimeoutError("slow"))}
        )
        run = _run()

        result = asyncio.run(_executor(fanout, emitter).execute_batch_step(_step(run, StepType.BATCH), run))

        assert result.completed_provider_ids() == ["claude"]
        assert result.results["gemini"].status == "failed"
        assert result.errors["gemini"].type == ErrorType.TIMEOUT

        updates = events_of(observer, WorkflowEventType.WORKFLOW_STEP_UPDATE)
        assert [e.metadata["provider_id"] for e in updates] == ["gemini"]
        assert updates[0].metadata["status"] == "partial_failure"

        [partial] = events_of(observer, WorkflowEventType.WORKFLOW_PARTIAL_COMPLETE)
        assert partial.metadata["successful_providers"] == ["claude"]
        assert partial.metadata["failed_providers"][0]["provider_id"] == "gemini"

    def test_progress_events_report_provider_statuses(
        self, emitter: WorkflowEventEmitter, observer: MagicMock
    ) -> None:
        fanout = ScriptedFanout(
            batch={"claude": Script("Postgres", partials=["Post"]), "gemini": Script("SQLite")}
        )
        run = _run()

        asyncio.run(_executor(fanout, emitter).execute_batch_step(_step(run, StepType.BATCH), run))

        progress = events_of(observer, WorkflowEventType.WORKFLOW_PROGRESS)
        assert progress[0].metadata["completed_count"] == 0
        assert progress[-1].metadata["completed_count"] == 2
        assert progress[-1].metadata["total_count"] == 2
        assert progress[0].metadata["phase"] == "batch"

        [chunk] = events_of(observer, WorkflowEventType.PARTIAL_RESULT)
        assert chunk.metadata == {"provider_id": "claude", "chunk": {"text": "Post"}}

    def test_writes_context_cache_before_resolving(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(
            batch={
                "claude": Script("Postgres", meta={"conv": "c1"}),
                "gemini": Script(error=TimeoutError()),
            }
        )
        run = _run()

        asyncio.run(_executor(fanout, emitter).execute_batch_step(_step(run, StepType.BATCH), run))

        assert run.provider_contexts == {"claude": {"conv": "c1"}}

    def test_persists_contexts_through_deferred_queue(self, emitter: WorkflowEventEmitter) -> None:
        persistence = MagicMock()
        fanout = ScriptedFanout(
            batch={"claude": Script("A", meta={"conv": "c1"}), "gemini": Script("B")}
        )
        run = _run()
        deferred = DeferredPersistence()
        executor = _executor(fanout, emitter, persistence=persistence, deferred=deferred)

        async def scenario() -> list:
            await executor.execute_batch_step(_step(run, StepType.BATCH), run)
            return await deferred.flush()

        assert asyncio.run(scenario()) == []

        persistence.update_provider_contexts.assert_called_once_with("s1", {"claude": {"conv": "c1"}})

    def test_strips_artifact_blocks(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(
            batch={"claude": Script("Use Postgres.<artifact id='x'>code</artifact>"), "gemini": Script("B")}
        )
        run = _run()

        result = asyncio.run(_executor(fanout, emitter).execute_batch_step(_step(run, StepType.BATCH), run))

        assert result.results["claude"].text == "Use Postgres."

    def test_all_auth_failures_raise_multi_provider_auth(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(
            batch={
                "claude": Script(error=ProviderError("unauthorized", status=401)),
                "gemini": Script(error=ProviderError("forbidden", status=403)),
            }
        )
        run = _run()

        with pytest.raises(MultiProviderAuthError) as exc_info:
            asyncio.run(_executor(fanout, emitter).execute_batch_step(_step(run, StepType.BATCH), run))

        assert exc_info.value.provider_ids == ["claude", "gemini"]
        assert exc_info.value.code == "MULTI_PROVIDER_AUTH"

    def test_no_text_anywhere_raises_all_failed(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(batch={"claude": Script("   "), "gemini": Script(error=TimeoutError())})
        run = _run()

        with pytest.raises(AllProvidersFailedError):
            asyncio.run(_executor(fanout, emitter).execute_batch_step(_step(run, StepType.BATCH), run))

    def test_prompt_over_every_limit_raises_before_dispatch(self, emitter: WorkflowEventEmitter) -> None:
        limits = ProviderLimits(
            {"claude": ProviderLimit(10, 10), "gemini": ProviderLimit(10, 10)}
        )
        fanout = ScriptedFanout(batch={"claude": Script("A"), "gemini": Script("B")})
        run = _run()

        with pytest.raises(InputTooLongError) as exc_info:
            asyncio.run(
                _executor(fanout, emitter, limits=limits).execute_batch_step(_step(run, StepType.BATCH), run)
            )

        assert exc_info.value.code == "INPUT_TOO_LONG"
        assert fanout.parallel_calls == []

    def test_provider_over_limit_is_skipped(self, emitter: WorkflowEventEmitter) -> None:
        limits = ProviderLimits({"claude": ProviderLimit(10, 10)})
        fanout = ScriptedFanout(batch={"claude": Script("A"), "gemini": Script("B")})
        run = _run()

        result = asyncio.run(
            _executor(fanout, emitter, limits=limits).execute_batch_step(_step(run, StepType.BATCH), run)
        )

        assert fanout.parallel_calls[0].provider_ids == ["gemini"]
        assert result.results["claude"].status == "skipped"
        assert result.results["claude"].meta["reason"] == "input_too_long"

    def test_open_circuit_skips_provider(self, emitter: WorkflowEventEmitter) -> None:
        health = HealthTracker(failure_threshold=1)
        health.record_failure("claude")
        fanout = ScriptedFanout(batch={"claude": Script("A"), "gemini": Script("B")})
        run = _run()

        result = asyncio.run(
            _executor(fanout, emitter, health=health).execute_batch_step(_step(run, StepType.BATCH), run)
        )

        assert fanout.parallel_calls[0].provider_ids == ["gemini"]
        assert result.results["claude"].meta["reason"] == "circuit_open"

    def test_every_circuit_open_raises(self, emitter: WorkflowEventEmitter) -> None:
        health = HealthTracker(failure_threshold=1)
        health.record_failure("claude")
        health.record_failure("gemini")
        run = _run()

        with pytest.raises(AllProvidersFailedError, match="circuit open"):
            asyncio.run(
                _executor(ScriptedFanout(), emitter, health=health).execute_batch_step(
                    _step(run, StepType.BATCH), run
                )
            )

    def test_continuations_are_passed_to_fanout(self, emitter: WorkflowEventEmitter) -> None:
        request = WorkflowRequest(
            type=RequestType.EXTEND, session_id="s1", user_message="And caching?", providers=["claude"]
        )
        context = ResolvedContext(
            type=RequestType.EXTEND,
            session_id="s1",
            last_turn_id="ai-1",
            provider_contexts={"claude": {"conv": "c1"}},
        )
        workflow = WorkflowCompiler(clock=lambda: 1000).compile(request, context)
        run = RunState(workflow=workflow, request=request, resolved_context=context)
        fanout = ScriptedFanout(batch={"claude": Script("Redis")})

        asyncio.run(_executor(fanout, emitter).execute_batch_step(workflow.steps[0], run))

        assert fanout.parallel_calls[0].provider_contexts == {"claude": {"conv": "c1"}}


class TestMappingStep:
    """Tests for execute_mapping_step()."""

    def test_parses_narrative_topology_and_options(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(single={"claude": [Script(TOPOLOGY_TEXT)]})
        run = _with_batch(_run(), claude="Postgres", gemini="SQLite")

        output = asyncio.run(_executor(fanout, emitter).execute_mapping_step(_step(run, StepType.MAPPING), run))

        assert output.text == "The council mostly agrees."
        assert output.meta["citation_source_order"] == {1: "claude", 2: "gemini"}
        assert [c["id"] for c in output.meta["graph_topology"]["claims"]] == ["a", "b"]
        assert output.meta["option_titles"] == ["Use Postgres"]
        assert output.meta["raw_mapping_text"] == TOPOLOGY_TEXT

    def test_sources_are_numbered_in_provider_order(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(single={"claude": [Script(TOPOLOGY_TEXT)]})
        run = _with_batch(_run(), gemini="SQLite", claude="Postgres")

        asyncio.run(_executor(fanout, emitter).execute_mapping_step(_step(run, StepType.MAPPING), run))

        prompt = fanout.single_calls[0].prompt
        assert "[1] <response>\nPostgres" in prompt
        assert "[2] <response>\nSQLite" in prompt

    def test_resumes_mapper_from_batch_context(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(single={"claude": [Script(TOPOLOGY_TEXT)]})
        run = _with_batch(_run(), claude="Postgres", gemini="SQLite")
        run.provider_contexts["claude"] = {"conv": "cached"}

        asyncio.run(_executor(fanout, emitter).execute_mapping_step(_step(run, StepType.MAPPING), run))

        assert fanout.single_calls[0].provider_context == {"conv": "cached"}

    def test_requires_two_sources(self, emitter: WorkflowEventEmitter) -> None:
        run = _with_batch(_run(), claude="Postgres")

        with pytest.raises(SourceResolutionError, match="at least 2"):
            asyncio.run(
                _executor(ScriptedFanout(), emitter).execute_mapping_step(_step(run, StepType.MAPPING), run)
            )

    def test_mapper_over_limit_fails(self, emitter: WorkflowEventEmitter) -> None:
        limits = ProviderLimits({"claude": ProviderLimit(50, 50)})
        run = _with_batch(_run(), claude="Postgres", gemini="SQLite")

        with pytest.raises(InputTooLongError) as exc_info:
            asyncio.run(
                _executor(ScriptedFanout(), emitter, limits=limits).execute_mapping_step(
                    _step(run, StepType.MAPPING), run
                )
            )
        assert exc_info.value.code == "INPUT_TOO_LONG"
        assert exc_info.value.provider_id == "claude"
        assert exc_info.value.max_chars == 50
        assert classify_error(exc_info.value).type == ErrorType.INPUT_TOO_LONG


class TestSynthesisStep:
    def _mapped(self) -> RunState:
        run = _with_batch(_run(), claude="Postgres", gemini="SQLite")
        mapping = ProviderOutput(
            provider_id="claude",
            text="Narrative",
            meta={
                "graph_topology": {"claims": [claim("a", [1, 2])], "edges": []},
                "citation_source_order": {1: "claude", 2: "gemini"},
                "option_titles": ["Use Postgres"],
            },
        )
        run.step_results[MAPPING] = StepResult.completed(mapping)
        return run

    def test_synthesis_uses_mapping_and_sources(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(single={"claude": [Script("Use Postgres.")]})
        run = self._mapped()

        output = asyncio.run(_executor(fanout, emitter).execute_synthesis_step(_step(run, StepType.SYNTHESIS), run))

        assert output.text == "Use Postgres."
        prompt = fanout.single_calls[0].prompt
        assert "Narrative" in prompt
        assert "- Use Postgres" in prompt
        assert "SQLite" in prompt

    def test_recovers_streamed_text_after_failure(
        self, emitter: WorkflowEventEmitter, observer: MagicMock
    ) -> None:
        fanout = ScriptedFanout(
            single={"claude": [Script(partials=["Use Postgres, because"], error=TimeoutError())]}
        )
        run = self._mapped()

        output = asyncio.run(_executor(fanout, emitter).execute_synthesis_step(_step(run, StepType.SYNTHESIS), run))

        assert output.text == "Use Postgres, because"
        assert output.soft_error["type"] == "timeout"

    def test_failure_without_streamed_text_raises(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(single={"claude": [Script(error=TimeoutError("slow"))]})
        run = self._mapped()

        with pytest.raises(TimeoutError):
            asyncio.run(
                _executor(fanout, emitter).execute_synthesis_step(_step(run, StepType.SYNTHESIS), run)
            )

    def test_auth_failure_falls_back_to_another_provider(self, emitter: WorkflowEventEmitter) -> None:
        fallback = MagicMock()
        fallback.pick_fallback.return_value = "gemini"
        fanout = ScriptedFanout(
            single={
                "claude": [Script(error=ProviderError("expired", status=401))],
                "gemini": [Script("Use SQLite.")],
            }
        )
        run = self._mapped()

        output = asyncio.run(
            _executor(fanout, emitter, fallback_strategy=fallback).execute_synthesis_step(
                _step(run, StepType.SYNTHESIS), run
            )
        )

        assert output.provider_id == "gemini"
        assert fallback.pick_fallback.call_args[0][0] == "synthesis"

    def test_non_auth_failure_does_not_fall_back(self, emitter: WorkflowEventEmitter) -> None:
        fallback = MagicMock()
        fanout = ScriptedFanout(single={"claude": [Script(error=ConnectionError("down"))]})
        run = self._mapped()

        with pytest.raises(ConnectionError):
            asyncio.run(
                _executor(fanout, emitter, fallback_strategy=fallback).execute_synthesis_step(
                    _step(run, StepType.SYNTHESIS), run
                )
            )
        fallback.pick_fallback.assert_not_called()

    def test_refiner_uses_single_call_timeout(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(single={"gemini": [Script("Overclaims on scale.")]})
        run = self._mapped()
        run.step_results[SYNTHESIS] = StepResult.completed(
            ProviderOutput(provider_id="claude", text="Use Postgres.")
        )

        output = asyncio.run(
            _executor(fanout, emitter, single_call_timeout=12.5).execute_refiner_step(
                _step(run, StepType.REFINER), run
            )
        )

        assert fanout.single_calls[0].timeout == 12.5
        assert output.meta["refiner_output"] == {"text": "Overclaims on scale."}

    def test_refiner_requires_synthesis(self, emitter: WorkflowEventEmitter) -> None:
        run = self._mapped()

        with pytest.raises(SourceResolutionError, match="completed synthesis"):
            asyncio.run(
                _executor(ScriptedFanout(), emitter).execute_refiner_step(_step(run, StepType.REFINER), run)
            )

    def test_understand_carries_problem_structure(self, emitter: WorkflowEventEmitter) -> None:
        fanout = ScriptedFanout(single={"claude": [Script("The key insight.")]})
        run = self._mapped()

        output = asyncio.run(
            _executor(fanout, emitter).execute_understand_step(_step(run, StepType.UNDERSTAND), run)
        )

        structure = output.meta["understand_output"]["problem_structure"]
        assert structure["primary_pattern"]
        assert "Problem structure" in fanout.single_calls[0].prompt
        assert run.structural_analysis is not None

    def test_understand_requires_mapper_artifact(self, emitter: WorkflowEventEmitter) -> None:
        run = _with_batch(_run(), claude="Postgres", gemini="SQLite")
        run.step_results[MAPPING] = StepResult.completed(ProviderOutput(provider_id="claude", text="n"))

        with pytest.raises(SourceResolutionError, match="mapper artifact"):
            asyncio.run(
                _executor(ScriptedFanout(), emitter).execute_understand_step(
                    _step(run, StepType.UNDERSTAND), run
                )
            )


class TestResolveSourceData:
    def test_skips_failed_and_empty_outputs(self, emitter: WorkflowEventEmitter) -> None:
        run = _run()
        run.step_results[BATCH] = StepResult.completed(
            BatchResult(
                results={
                    "claude": ProviderOutput(provider_id="claude", text="A"),
                    "gemini": ProviderOutput(provider_id="gemini", text="", status="failed"),
                }
            )
        )

        sources = _executor(ScriptedFanout(), emitter).resolve_source_data([BATCH], None, run)

        assert sources == {"claude": "A"}

    def test_no_source_raises(self, emitter: WorkflowEventEmitter) -> None:
        with pytest.raises(SourceResolutionError, match="No valid source"):
            _executor(ScriptedFanout(), emitter).resolve_source_data(None, None, _run())
