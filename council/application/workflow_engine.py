"""Workflow engine: runs a compiled workflow phase by phase.

Phases run strictly in order (batch, mapping, consensus gate, optional
cognitive halt, synthesis, refiner and antagonist, understand, gauntlet)
and every run ends with persist-and-finalize plus exactly one
``WORKFLOW_COMPLETE`` event.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from council.application.config_models import EngineConfig
from council.application.prompt_builder import PromptBuilder, TemplatePromptBuilder
from council.application.provider_context import ProviderContextResolver
from council.application.response_processing import DefaultResponseProcessor, ResponseProcessor
from council.application.run_state import FROZEN_BATCH_STEP_ID, RunState
from council.application.step_executor import FallbackStrategy, StepExecutor
from council.application.streaming_manager import StreamingManager
from council.application.turn_builder import build_persistence_result, build_turn_finalized
from council.application.workflow_compiler import WorkflowCompiler
from council.domain.analysis.consensus_gate import compute_consensus_gate
from council.domain.events.emitter import WorkflowEventEmitter
from council.domain.events.event import WorkflowEvent
from council.domain.events.event_types import WorkflowEventType
from council.domain.models.consensus import ConsensusGate
from council.domain.models.results import BatchResult, ProviderOutput, StepResult
from council.domain.models.steps import CompiledWorkflow, WorkflowContext
from council.domain.models.workflow_request import (
    RequestType,
    ResolvedContext,
    StepType,
    WorkflowRequest,
)
from council.domain.persistence.collaborator import PersistenceCollaborator
from council.domain.persistence.deferred import DeferredPersistence
from council.domain.providers.fanout import FanoutCollaborator
from council.domain.providers.health_tracker import HealthTracker

logger = logging.getLogger(__name__)


class HaltReason(str, Enum):
    """Why a run stopped before its final phase."""

    INSUFFICIENT_WITNESSES = "insufficient_witnesses"
    BATCH_FAILED = "batch_failed"
    MAPPING_FAILED = "mapping_failed"
    SYNTHESIS_FAILED = "synthesis_failed"
    MAPPING_ARTIFACT_MISSING = "mapping_artifact_missing"
    COGNITIVE_EXPLORATION_READY = "cognitive_exploration_ready"
    COGNITIVE_HALT_FAILED = "cognitive_halt_failed"


class CognitiveHaltPolicy(Protocol):
    def should_halt(
        self,
        request: WorkflowRequest,
        context: WorkflowContext,
        mapping_result: ProviderOutput,
    ) -> bool:
        ...


class ModeHaltPolicy:
    """Halts after mapping when the request's mode is one of ``modes``."""

    def __init__(self, modes: list[str] | None = None) -> None:
        self.modes = set(modes or [])

    def should_halt(
        self,
        request: WorkflowRequest,
        context: WorkflowContext,
        mapping_result: ProviderOutput,
    ) -> bool:
        return bool(request.mode) and request.mode in self.modes


@dataclass(frozen=True, slots=True)
class WorkflowOutcome:
    """What a run produced, as returned to the caller."""

    workflow_id: str
    session_id: str
    step_results: dict[str, StepResult]
    halt_reason: HaltReason | None = None
    workflow_control: ConsensusGate | None = None
    user_turn_id: str | None = None
    ai_turn_id: str | None = None

    @property
    def halted(self) -> bool:
        return self.halt_reason is not None


def _unwrap_meta(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    meta = raw.get("meta")
    return dict(meta) if isinstance(meta, dict) else dict(raw)


def _frozen_batch(outputs: dict[str, Any]) -> BatchResult:
    """Rebuild a batch result from stored outputs (dicts or bare strings)."""
    results: dict[str, ProviderOutput] = {}
    for provider_id, value in outputs.items():
        if isinstance(value, str):
            results[provider_id] = ProviderOutput(provider_id=provider_id, text=value)
        elif isinstance(value, dict):
            results[provider_id] = ProviderOutput(
                provider_id=provider_id,
                text=value.get("text") or "",
                status=value.get("status") or "completed",
                meta=dict(value.get("meta") or {}),
            )
    return BatchResult(results=results)


@dataclass
class WorkflowEngine:
    """Executes compiled workflows under explicit halt rules.

    Every collaborator the caller does not supply gets a default owned by
    this engine instance, so separate engines never share health or
    streaming state.
    """

    fanout: FanoutCollaborator
    persistence: PersistenceCollaborator | None = None
    config: EngineConfig = field(default_factory=EngineConfig)
    event_emitter: WorkflowEventEmitter | None = None
    health_tracker: HealthTracker | None = None
    streaming: StreamingManager | None = None
    deferred: DeferredPersistence | None = None
    response_processor: ResponseProcessor | None = None
    prompt_builder: PromptBuilder | None = None
    fallback_strategy: FallbackStrategy | None = None
    halt_policy: CognitiveHaltPolicy | None = None
    compiler: WorkflowCompiler | None = None

    def __post_init__(self) -> None:
        if self.event_emitter is None:
            self.event_emitter = WorkflowEventEmitter()
        if self.health_tracker is None:
            self.health_tracker = HealthTracker()
        if self.streaming is None:
            self.streaming = StreamingManager(
                event_emitter=self.event_emitter, config=self.config.streaming
            )
        if self.deferred is None:
            self.deferred = DeferredPersistence()
        if self.halt_policy is None:
            self.halt_policy = ModeHaltPolicy(self.config.cognitive_modes)
        if self.compiler is None:
            self.compiler = WorkflowCompiler(default_mapper=self.config.default_mapper)

        self.executor = StepExecutor(
            self.fanout,
            self.health_tracker,
            self.streaming,
            limits=self.config.build_provider_limits(),
            event_emitter=self.event_emitter,
            response_processor=self.response_processor or DefaultResponseProcessor(),
            prompt_builder=self.prompt_builder or TemplatePromptBuilder(),
            persistence=self.persistence,
            deferred=self.deferred,
            context_resolver=ProviderContextResolver(self.persistence),
            fallback_strategy=self.fallback_strategy,
            single_call_timeout=self.config.single_call_timeout,
            analysis_config=self.config.analysis,
        )

    # ========================================================================
    # Entry points
    # ========================================================================

    async def run(
        self, request: WorkflowRequest, resolved_context: ResolvedContext | None
    ) -> WorkflowOutcome:
        """Compile the request and execute the resulting workflow.

        Raises:
            WorkflowCompileError: If the request or context is invalid
        """
        workflow = self.compiler.compile(request, resolved_context)
        return await self.execute(workflow, request, resolved_context)

    async def execute(
        self,
        workflow: CompiledWorkflow,
        request: WorkflowRequest,
        resolved_context: ResolvedContext | None = None,
    ) -> WorkflowOutcome:
        """Run every phase of a compiled workflow.

        Step failures are turned into halt reasons; ``WORKFLOW_COMPLETE``
        is emitted exactly once whatever happens.
        """
        run = RunState(workflow=workflow, request=request, resolved_context=resolved_context)
        self._seed(run)
        # Snapshots stay keyed by this id even if persistence assigns a canonical one
        stream_session_id = run.session_id
        logger.info(f"Starting workflow {run.workflow_id} ({run.request_type.value}) for {run.session_id}")

        try:
            try:
                halt_reason = await self._run_phases(run)
            except Exception as e:
                logger.error(f"Workflow {run.workflow_id} crashed: {e}")
                self._complete(run, halt_reason=None, error=str(e))
                raise

            if halt_reason is None or not run.is_recompute:
                self._persist(run)
            self._finalize_turn(run)
            self._complete(run, halt_reason)
        finally:
            self.streaming.clear_cache(stream_session_id)
            await self.deferred.flush()

        context = run.context
        return WorkflowOutcome(
            workflow_id=run.workflow_id,
            session_id=context.session_id,
            step_results=dict(run.step_results),
            halt_reason=halt_reason,
            workflow_control=context.workflow_control,
            user_turn_id=context.canonical_user_turn_id,
            ai_turn_id=context.canonical_ai_turn_id,
        )

    def cancel(self, session_id: str) -> None:
        """Abort in-flight provider calls for a session."""
        self.fanout.cancel(session_id)

    # ========================================================================
    # Phases
    # ========================================================================

    def _seed(self, run: RunState) -> None:
        context = run.resolved_context
        if context is None:
            return
        if context.type == RequestType.RECOMPUTE:
            if context.frozen_batch_outputs:
                run.step_results[FROZEN_BATCH_STEP_ID] = StepResult.completed(
                    _frozen_batch(context.frozen_batch_outputs)
                )
            for provider_id, raw in (context.provider_contexts_at_source_turn or {}).items():
                meta = _unwrap_meta(raw)
                if meta:
                    run.historical_contexts[provider_id] = meta
        elif context.type == RequestType.EXTEND:
            for provider_id, raw in (context.provider_contexts or {}).items():
                meta = _unwrap_meta(raw)
                if meta:
                    run.provider_contexts[provider_id] = meta

    async def _run_phases(self, run: RunState) -> HaltReason | None:
        workflow = run.workflow
        executor = self.executor

        for step in workflow.steps_of(StepType.BATCH):
            if not await self._run_step(run, step, executor.execute_batch_step):
                logger.error(f"Batch step {step.step_id} failed, halting")
                return HaltReason.BATCH_FAILED
            batch = run.step_results[step.step_id].result
            witnesses = len(batch.completed_provider_ids())
            if witnesses < self.config.min_witnesses and not run.is_recompute:
                logger.info(
                    f"Only {witnesses} provider(s) answered, need {self.config.min_witnesses}; halting"
                )
                return HaltReason.INSUFFICIENT_WITNESSES

        for step in workflow.steps_of(StepType.MAPPING):
            if not await self._run_step(run, step, executor.execute_mapping_step):
                logger.error(f"Mapping step {step.step_id} failed, halting")
                return HaltReason.MAPPING_FAILED
            self._upsert_response(run, step.step_id, StepType.MAPPING)

        if not run.is_recompute:
            self._apply_consensus_gate(run)
            halt_reason = self._cognitive_halt(run)
            if halt_reason is not None:
                return halt_reason

        for step in workflow.steps_of(StepType.SYNTHESIS):
            if not await self._run_step(run, step, executor.execute_synthesis_step):
                logger.error(f"Synthesis step {step.step_id} failed, halting")
                return HaltReason.SYNTHESIS_FAILED
            self._upsert_response(run, step.step_id, StepType.SYNTHESIS)

        gate = run.context.workflow_control
        if gate is not None and gate.consensus_only:
            logger.info(f"Consensus gate ({gate.reason.value}): skipping refiner and antagonist")
            optional = (StepType.UNDERSTAND, StepType.GAUNTLET)
        else:
            optional = (StepType.REFINER, StepType.ANTAGONIST, StepType.UNDERSTAND, StepType.GAUNTLET)

        handlers: dict[StepType, Callable[[Any, RunState], Awaitable[Any]]] = {
            StepType.REFINER: executor.execute_refiner_step,
            StepType.ANTAGONIST: executor.execute_antagonist_step,
            StepType.UNDERSTAND: executor.execute_understand_step,
            StepType.GAUNTLET: executor.execute_gauntlet_step,
        }
        for step_type in optional:
            for step in workflow.steps_of(step_type):
                if await self._run_step(run, step, handlers[step_type]):
                    self._upsert_response(run, step.step_id, step_type)

        return None

    async def _run_step(
        self,
        run: RunState,
        step: Any,
        handler: Callable[[Any, RunState], Awaitable[BatchResult | ProviderOutput]],
    ) -> bool:
        """Execute one step and record its settled result.

        Returns:
            True if the step completed
        """
        try:
            result = await handler(step, run)
        except Exception as e:
            logger.warning(f"Step {step.step_id} ({step.type}) failed: {e}")
            run.step_results[step.step_id] = StepResult.failed(str(e))
            self._emit(
                WorkflowEventType.WORKFLOW_STEP_UPDATE,
                run,
                step.step_id,
                status="failed",
                error=str(e),
                **self._recompute_fields(run),
            )
            return False

        run.step_results[step.step_id] = StepResult.completed(result)
        self._emit(
            WorkflowEventType.WORKFLOW_STEP_UPDATE,
            run,
            step.step_id,
            status="completed",
            result=result.model_dump(mode="json"),
            **self._recompute_fields(run),
        )
        return True

    def _apply_consensus_gate(self, run: RunState) -> None:
        mapping = self._latest_result(run, StepType.MAPPING, ProviderOutput)
        batch = self._latest_result(run, StepType.BATCH, BatchResult)
        if mapping is None or batch is None:
            return
        try:
            run.context.workflow_control = compute_consensus_gate(mapping, batch)
        except Exception as e:
            logger.warning(f"Consensus gate failed, running every phase: {e}")
            run.context.workflow_control = None

    def _cognitive_halt(self, run: RunState) -> HaltReason | None:
        mapping = self._latest_result(run, StepType.MAPPING, ProviderOutput)
        if mapping is None:
            return None
        try:
            if not self.halt_policy.should_halt(run.request, run.context, mapping):
                return None
            topology = mapping.meta.get("graph_topology")
            if not topology:
                logger.warning("Cognitive halt requested but mapper produced no artifact")
                return HaltReason.MAPPING_ARTIFACT_MISSING

            analysis = self.executor.structural_analysis_for(mapping, run)
            gate = run.context.workflow_control
            self._emit(
                WorkflowEventType.MAPPER_ARTIFACT_READY,
                run,
                None,
                artifact=topology,
                narrative=mapping.text,
                option_titles=mapping.meta.get("option_titles") or [],
                structural_analysis=analysis.to_dict(),
                problem_structure=analysis.shape.model_dump(mode="json"),
                workflow_control=gate.model_dump(mode="json") if gate else None,
            )
            logger.info(f"Cognitive halt for mode {run.request.mode}")
            return HaltReason.COGNITIVE_EXPLORATION_READY
        except Exception as e:
            logger.error(f"Cognitive halt failed: {e}")
            return HaltReason.COGNITIVE_HALT_FAILED

    # ========================================================================
    # Persistence and completion
    # ========================================================================

    def _upsert_response(self, run: RunState, step_id: str, step_type: StepType) -> None:
        """Store a single-provider result on the AI turn without waiting."""
        ai_turn_id = run.context.canonical_ai_turn_id
        if self.persistence is None or run.is_recompute or not ai_turn_id:
            return
        output = run.step_results[step_id].result
        if not isinstance(output, ProviderOutput):
            return
        self.deferred.submit(
            self.persistence.upsert_provider_response,
            run.session_id,
            ai_turn_id,
            output.provider_id,
            step_type.value,
            0,
            {"text": output.text, "status": output.status, "meta": dict(output.meta)},
            description=f"{step_type.value} response for {output.provider_id}",
        )

    def _persist(self, run: RunState) -> None:
        if self.persistence is None:
            return
        context = run.context
        gate = context.workflow_control
        result = build_persistence_result(
            run.workflow.steps,
            run.step_results,
            session_id=context.session_id,
            thread_id=context.thread_id,
            meta={
                "workflow_id": run.workflow_id,
                "mode": run.workflow.mode,
                "workflow_control": gate.model_dump(mode="json") if gate else None,
            },
        )
        request = run.request.model_copy(
            update={
                "session_id": context.session_id,
                "user_message": context.user_message or run.request.user_message,
                "client_user_turn_id": context.canonical_user_turn_id,
                "client_ai_turn_id": context.canonical_ai_turn_id,
            }
        )
        try:
            persisted = self.persistence.persist_workflow_result(
                request, run.resolved_context, result
            )
        except Exception as e:
            logger.error(f"Persisting workflow {run.workflow_id} failed: {e}")
            return

        context.canonical_user_turn_id = persisted.user_turn_id or context.canonical_user_turn_id
        context.canonical_ai_turn_id = persisted.ai_turn_id or context.canonical_ai_turn_id
        if run.request_type == RequestType.INITIALIZE and persisted.session_id:
            context.session_id = persisted.session_id

        if not run.is_recompute:
            self._emit(
                WorkflowEventType.TURN_CREATED,
                run,
                None,
                user_turn_id=context.canonical_user_turn_id,
                ai_turn_id=context.canonical_ai_turn_id,
            )

    def _finalize_turn(self, run: RunState) -> None:
        """Emit ``TURN_FINALIZED``; recompute runs create no turn."""
        context = run.context
        if run.is_recompute or not context.user_message:
            return
        payload = build_turn_finalized(
            run.workflow.steps,
            run.step_results,
            session_id=context.session_id,
            user_turn_id=context.canonical_user_turn_id or f"user-{run.workflow_id}",
            ai_turn_id=context.canonical_ai_turn_id or f"ai-{run.workflow_id}",
            user_message=context.user_message,
            workflow_control=context.workflow_control,
            thread_id=context.thread_id,
        )
        if payload is None:
            logger.info("No responses to finalize")
            return
        self._emit(WorkflowEventType.TURN_FINALIZED, run, None, **payload)

    def _complete(
        self, run: RunState, halt_reason: HaltReason | None, error: str | None = None
    ) -> None:
        final_results: dict[str, Any] = {}
        for step_id, step_result in run.step_results.items():
            entry: dict[str, Any] = {"status": step_result.status.value}
            if step_result.error:
                entry["error"] = step_result.error
            if step_result.result is not None:
                entry["result"] = step_result.result.model_dump(mode="json")
            final_results[step_id] = entry

        metadata: dict[str, Any] = {"final_results": final_results}
        if halt_reason is not None:
            metadata["halt_reason"] = halt_reason.value
        if error is not None:
            metadata["error"] = error
        self._emit(WorkflowEventType.WORKFLOW_COMPLETE, run, None, **metadata)
        logger.info(
            f"Workflow {run.workflow_id} complete"
            + (f" (halted: {halt_reason.value})" if halt_reason else "")
        )

    # ========================================================================
    # Helpers
    # ========================================================================

    def _latest_result(self, run: RunState, step_type: StepType, kind: type) -> Any:
        for step in reversed(run.workflow.steps_of(step_type)):
            step_result = run.step_results.get(step.step_id)
            if step_result is not None and step_result.is_completed and isinstance(
                step_result.result, kind
            ):
                return step_result.result
        if step_type == StepType.BATCH:
            seeded = run.step_results.get(FROZEN_BATCH_STEP_ID)
            if seeded is not None and isinstance(seeded.result, kind):
                return seeded.result
        return None

    def _recompute_fields(self, run: RunState) -> dict[str, Any]:
        if not run.is_recompute or run.resolved_context is None:
            return {}
        return {"is_recompute": True, "source_turn_id": run.resolved_context.source_turn_id}

    def _emit(
        self,
        event_type: WorkflowEventType,
        run: RunState,
        step_id: str | None = None,
        **metadata: Any,
    ) -> None:
        """Emit a workflow event with common fields."""
        self.event_emitter.emit(
            WorkflowEvent(
                event_type=event_type,
                session_id=run.session_id,
                timestamp=datetime.now(timezone.utc),
                workflow_id=run.workflow_id,
                step_id=step_id,
                metadata=metadata,
            )
        )
