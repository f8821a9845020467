"""StepExecutor - runs one compiled step against the fan-out collaborator.

The batch step fans out to every eligible provider concurrently. All other
step types make a single-provider call that streams through the
``StreamingManager`` and may fall back to recovered partial text when the
call fails mid-stream.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from council.application.provider_context import ProviderContextResolver
from council.application.prompt_builder import PromptBuilder
from council.application.response_processing import ResponseProcessor
from council.application.run_state import FROZEN_BATCH_STEP_ID, RunState
from council.application.streaming_manager import StreamingManager
from council.domain.analysis.structural_analysis import (
    StructuralAnalysis,
    compute_structural_analysis,
)
from council.domain.analysis.thresholds import AnalysisConfig
from council.domain.constants import DEFAULT_SINGLE_CALL_TIMEOUT, MIN_SYNTHESIS_SOURCES
from council.domain.errors import (
    AllProvidersFailedError,
    InputTooLongError,
    MultiProviderAuthError,
    ProviderError,
    SourceResolutionError,
)
from council.domain.events.emitter import WorkflowEventEmitter
from council.domain.events.event import WorkflowEvent
from council.domain.events.event_types import WorkflowEventType
from council.domain.models.claim_graph import ClaimGraph
from council.domain.models.results import (
    BatchResult,
    ClassifiedError,
    ErrorType,
    ProviderOutput,
    ProviderStatus,
    ProviderStatusState,
)
from council.domain.models.steps import (
    AntagonistStep,
    BatchStep,
    GauntletStep,
    MappingStep,
    RefinerStep,
    SourceHistorical,
    SynthesisStep,
    UnderstandStep,
)
from council.domain.models.workflow_request import StepType
from council.domain.persistence.collaborator import PersistenceCollaborator
from council.domain.persistence.deferred import DeferredPersistence
from council.domain.providers.ai_provider import ProviderResponse
from council.domain.providers.error_classifier import (
    circuit_open_error,
    classify_error,
    input_too_long_error,
)
from council.domain.providers.fanout import FanoutCallbacks, FanoutCollaborator
from council.domain.providers.health_tracker import HealthTracker
from council.domain.providers.provider_limits import ProviderLimits

logger = logging.getLogger(__name__)


class FallbackStrategy(Protocol):
    """Picks a replacement provider after an auth failure."""

    def pick_fallback(self, role: str, context: dict[str, Any]) -> str | None:
        ...


class StepExecutor:
    """Executes individual workflow steps.

    Args:
        fanout: Fan-out collaborator used for every provider call
        health_tracker: Circuit breaker consulted before the batch fan-out
        streaming: Delta reconciliation and partial-result emission
        limits: Per-provider input budgets
        event_emitter: Boundary event sink
        response_processor: Text cleanup and mapping parsing
        prompt_builder: Prompt text for every step type
        persistence: Durable storage (optional)
        deferred: Background queue for non-blocking writes
        context_resolver: Resolves a provider's continuation blob
        fallback_strategy: Auth-failure fallback for synthesis (optional)
        single_call_timeout: Seconds allowed for refiner/antagonist/understand/gauntlet
        analysis_config: Thresholds for the structural analysis
    """

    def __init__(
        self,
        fanout: FanoutCollaborator,
        health_tracker: HealthTracker,
        streaming: StreamingManager,
        *,
        limits: ProviderLimits,
        event_emitter: WorkflowEventEmitter,
        response_processor: ResponseProcessor,
        prompt_builder: PromptBuilder,
        persistence: PersistenceCollaborator | None = None,
        deferred: DeferredPersistence | None = None,
        context_resolver: ProviderContextResolver | None = None,
        fallback_strategy: FallbackStrategy | None = None,
        single_call_timeout: float = DEFAULT_SINGLE_CALL_TIMEOUT,
        analysis_config: AnalysisConfig | None = None,
    ) -> None:
        self._fanout = fanout
        self._health = health_tracker
        self._streaming = streaming
        self._limits = limits
        self._emitter = event_emitter
        self._processor = response_processor
        self._prompts = prompt_builder
        self._persistence = persistence
        self._deferred = deferred or DeferredPersistence()
        self._contexts = context_resolver or ProviderContextResolver(persistence)
        self._fallback = fallback_strategy
        self._single_call_timeout = single_call_timeout
        self._analysis_config = analysis_config or AnalysisConfig()

    # ========================================================================
    # Batch
    # ========================================================================

    async def execute_batch_step(self, step: BatchStep, run: RunState) -> BatchResult:
        """Fan the prompt out to every eligible provider.

        Raises:
            InputTooLongError: If no provider can accept the prompt
            MultiProviderAuthError: If nothing succeeded and every failure was auth
            AllProvidersFailedError: If no provider produced usable text
        """
        payload = step.payload
        prompt = self._prompts.build_batch_prompt(payload.prompt, payload.previous_context)
        statuses: dict[str, ProviderStatus] = {}

        active: list[str] = []
        for provider_id in payload.providers:
            decision = self._health.should_attempt(provider_id)
            if decision.allowed:
                statuses[provider_id] = ProviderStatus(
                    provider_id=provider_id, status=ProviderStatusState.QUEUED
                )
                active.append(provider_id)
            else:
                logger.info(f"Skipping {provider_id}: {decision.reason}")
                statuses[provider_id] = ProviderStatus(
                    provider_id=provider_id,
                    status=ProviderStatusState.SKIPPED,
                    error=circuit_open_error(decision.retry_after_ms),
                    skipped_reason=decision.reason or "circuit_open",
                )
        self._emit_progress(run, step.step_id, statuses)

        if not active:
            raise AllProvidersFailedError(
                "All selected providers are temporarily unavailable (circuit open)"
            )

        prompt_length = len(prompt)
        eligible: list[str] = []
        for provider_id in active:
            if self._limits.is_within_limit(provider_id, prompt_length):
                if self._limits.should_warn(provider_id, prompt_length):
                    logger.warning(
                        f"Prompt length {prompt_length} is close to the limit for {provider_id}"
                    )
                eligible.append(provider_id)
                continue
            statuses[provider_id] = ProviderStatus(
                provider_id=provider_id,
                status=ProviderStatusState.SKIPPED,
                error=input_too_long_error(
                    prompt_length, self._limits.get_max_input_chars(provider_id) or 0
                ),
                skipped_reason="input_too_long",
            )
        if len(eligible) < len(active):
            self._emit_progress(run, step.step_id, statuses)
        if not eligible:
            raise InputTooLongError(prompt_length)

        contexts = {
            pid: continuation.meta
            for pid, continuation in (payload.provider_contexts or {}).items()
            if continuation.continue_thread and pid in eligible
        }

        def on_partial(provider_id: str, text: str) -> None:
            self._streaming.dispatch_partial_delta(run.session_id, step.step_id, provider_id, text)
            entry = statuses.get(provider_id)
            if entry is not None and entry.status == ProviderStatusState.QUEUED:
                entry.status = ProviderStatusState.STREAMING
                self._emit_progress(run, step.step_id, statuses)

        def on_provider_complete(provider_id: str, response: ProviderResponse) -> None:
            self._health.record_success(provider_id)
            entry = statuses.get(provider_id)
            if entry is not None:
                entry.status = ProviderStatusState.COMPLETED
                entry.error = None
                self._emit_progress(run, step.step_id, statuses)

        def on_error(provider_id: str, error: BaseException) -> None:
            self._emit(
                WorkflowEventType.WORKFLOW_STEP_UPDATE,
                run,
                step.step_id,
                status="partial_failure",
                provider_id=provider_id,
                error=str(error),
            )

        def on_all_complete(
            results: dict[str, ProviderResponse], errors: dict[str, BaseException]
        ) -> BatchResult:
            return self._aggregate_batch(step, run, statuses, results, errors)

        logger.info(f"Batch {step.step_id}: dispatching to {', '.join(eligible)}")
        return await self._fanout.execute_parallel_fanout(
            prompt,
            eligible,
            FanoutCallbacks(
                on_partial=on_partial,
                on_provider_complete=on_provider_complete,
                on_error=on_error,
                on_all_complete=on_all_complete,
            ),
            session_id=run.session_id,
            provider_contexts=contexts,
            use_thinking=payload.use_thinking,
        )

    def _aggregate_batch(
        self,
        step: BatchStep,
        run: RunState,
        statuses: dict[str, ProviderStatus],
        results: dict[str, ProviderResponse],
        errors: dict[str, BaseException],
    ) -> BatchResult:
        outputs: dict[str, ProviderOutput] = {}
        classified_errors: dict[str, ClassifiedError] = {}

        for provider_id, response in results.items():
            outputs[provider_id] = ProviderOutput(
                provider_id=provider_id,
                text=self._processor.clean(response.text or ""),
                meta=dict(response.meta or {}),
            )
            entry = statuses.get(provider_id)
            if entry is not None and entry.status != ProviderStatusState.COMPLETED:
                self._health.record_success(provider_id)
                entry.status = ProviderStatusState.COMPLETED

        for provider_id, error in errors.items():
            classified = classify_error(error)
            classified_errors[provider_id] = classified
            self._health.record_failure(provider_id, classified)
            outputs[provider_id] = ProviderOutput(
                provider_id=provider_id,
                status="failed",
                meta={"error": classified.message, "error_type": classified.type.value},
            )
            statuses[provider_id] = ProviderStatus(
                provider_id=provider_id, status=ProviderStatusState.FAILED, error=classified
            )
            logger.warning(f"Batch provider {provider_id} failed: {classified.type.value}")

        for provider_id, entry in statuses.items():
            if entry.status == ProviderStatusState.SKIPPED and provider_id not in outputs:
                outputs[provider_id] = ProviderOutput(
                    provider_id=provider_id,
                    status="skipped",
                    meta={
                        "error": entry.error.message if entry.error else entry.skipped_reason,
                        "skipped": True,
                        "reason": entry.skipped_reason,
                    },
                )

        batch = BatchResult(results=outputs, errors=classified_errors)
        if not batch.completed_provider_ids():
            auth_failures = [
                pid for pid, c in classified_errors.items() if c.type == ErrorType.AUTH_EXPIRED
            ]
            if errors and len(auth_failures) == len(errors):
                raise MultiProviderAuthError(sorted(errors))
            raise AllProvidersFailedError()

        self._emit_progress(run, step.step_id, statuses)
        failed = [s for s in statuses.values() if s.status == ProviderStatusState.FAILED]
        if failed:
            self._emit(
                WorkflowEventType.WORKFLOW_PARTIAL_COMPLETE,
                run,
                step.step_id,
                successful_providers=batch.completed_provider_ids(),
                failed_providers=[
                    {
                        "provider_id": s.provider_id,
                        "error": s.error.model_dump(mode="json") if s.error else None,
                    }
                    for s in failed
                ],
            )

        # Written before the step resolves so the next phase sees it
        updates = {
            pid: dict(output.meta)
            for pid, output in outputs.items()
            if output.status == "completed" and output.meta
        }
        if updates:
            run.provider_contexts.update(updates)
            if self._persistence is not None:
                self._deferred.submit(
                    self._persistence.update_provider_contexts,
                    run.session_id,
                    updates,
                    description=f"provider contexts for {step.step_id}",
                )
        return batch

    # ========================================================================
    # Mapping / synthesis
    # ========================================================================

    async def execute_mapping_step(self, step: MappingStep, run: RunState) -> ProviderOutput:
        """Ask the mapper to extract the claim graph from the batch outputs.

        The citation order numbers sources in the requested provider order;
        the mapper may cite supporters by these numbers.
        """
        payload = step.payload
        provider_id = payload.mapping_provider
        sources = self.resolve_source_data(payload.source_step_ids, payload.source_historical, run)
        if len(sources) < MIN_SYNTHESIS_SOURCES:
            raise SourceResolutionError(
                f"Mapping requires at least {MIN_SYNTHESIS_SOURCES} valid sources, "
                f"but only {len(sources)} found."
            )

        order = [pid for pid in (payload.provider_order or []) if pid in sources]
        order += [pid for pid in sources if pid not in order]
        citation_order = {index + 1: pid for index, pid in enumerate(order)}
        ordered = {pid: sources[pid] for pid in order}

        prompt = self._prompts.build_mapping_prompt(payload.original_prompt, ordered, citation_order)
        self._check_limit(provider_id, prompt)

        context = self._contexts.resolve(provider_id, run, payload.continue_from_batch_step)
        output = await self._call_single(
            step.step_id,
            provider_id,
            prompt,
            run,
            context=context,
            use_thinking=payload.use_thinking,
        )
        parsed = self._processor.process_mapping_response(output.text)
        if not parsed.narrative and parsed.topology is None:
            raise ProviderError(
                f"Mapping provider {provider_id} returned an empty response",
                provider_id=provider_id,
            )
        self._streaming.dispatch_partial_delta(
            run.session_id, step.step_id, provider_id, parsed.narrative, is_final=True
        )

        claims = (parsed.topology or {}).get("claims") or (parsed.topology or {}).get("nodes") or []
        logger.info(
            f"Mapping {step.step_id}: {len(claims)} claims from {len(citation_order)} sources"
        )
        return output.model_copy(
            update={
                "text": parsed.narrative,
                "meta": {
                    **output.meta,
                    "citation_source_order": citation_order,
                    "raw_mapping_text": output.text,
                    "graph_topology": parsed.topology,
                    "all_available_options": parsed.options,
                    "option_titles": parsed.option_titles,
                },
            }
        )

    async def execute_synthesis_step(self, step: SynthesisStep, run: RunState) -> ProviderOutput:
        """Synthesize one answer; retries once on a fallback provider after an auth failure."""
        payload = step.payload
        sources = self.resolve_source_data(payload.source_step_ids, payload.source_historical, run)
        if len(sources) < MIN_SYNTHESIS_SOURCES:
            raise SourceResolutionError(
                f"Synthesis requires at least {MIN_SYNTHESIS_SOURCES} valid sources, "
                f"but only {len(sources)} found."
            )
        mapping = self._mapping_output(payload.mapping_step_ids, run)
        prompt = self._prompts.build_synthesis_prompt(
            payload.original_prompt,
            sources,
            mapping.text if mapping else "",
            list(mapping.meta.get("option_titles") or []) if mapping else [],
        )

        async def attempt(provider_id: str) -> ProviderOutput:
            self._check_limit(provider_id, prompt)
            context = self._contexts.resolve(provider_id, run, payload.continue_from_batch_step)
            output = await self._call_single(
                step.step_id,
                provider_id,
                prompt,
                run,
                context=context,
                use_thinking=payload.use_thinking,
            )
            text = self._processor.clean(output.text)
            self._streaming.dispatch_partial_delta(
                run.session_id, step.step_id, provider_id, text, is_final=True
            )
            return output.model_copy(update={"text": text})

        provider_id = payload.synthesis_provider
        try:
            return await attempt(provider_id)
        except Exception as e:
            classified = classify_error(e)
            if classified.type != ErrorType.AUTH_EXPIRED or self._fallback is None:
                raise
            fallback = self._fallback.pick_fallback(
                StepType.SYNTHESIS.value,
                {"failed_provider": provider_id, "session_id": run.session_id, "error": classified},
            )
            if not fallback or fallback == provider_id:
                raise
            logger.warning(
                f"Synthesis provider {provider_id} needs re-auth, retrying with {fallback}"
            )
            return await attempt(fallback)

    # ========================================================================
    # Single-provider downstream steps
    # ========================================================================

    async def execute_refiner_step(self, step: RefinerStep, run: RunState) -> ProviderOutput:
        payload = step.payload
        sources = self.resolve_source_data(payload.source_step_ids, payload.source_historical, run)
        synthesis = self._latest_output(payload.synthesis_step_ids, run)
        if synthesis is None:
            raise SourceResolutionError("Refiner requires a completed synthesis.")
        mapping = self._mapping_output(payload.mapping_step_ids, run)
        prompt = self._prompts.build_refiner_prompt(
            payload.original_prompt,
            sources,
            synthesis.text,
            mapping.text if mapping else "",
            list(mapping.meta.get("option_titles") or []) if mapping else [],
        )
        return await self._run_generic_step(step.step_id, payload.refiner_provider, prompt, run, "refiner")

    async def execute_antagonist_step(self, step: AntagonistStep, run: RunState) -> ProviderOutput:
        payload = step.payload
        sources = self.resolve_source_data(payload.source_step_ids, payload.source_historical, run)
        synthesis = self._latest_output(payload.synthesis_step_ids, run)
        if synthesis is None:
            raise SourceResolutionError("Antagonist requires a completed synthesis.")
        mapping = self._mapping_output(payload.mapping_step_ids, run)
        refiner = self._latest_output(payload.refiner_step_ids, run)
        prompt = self._prompts.build_antagonist_prompt(
            payload.original_prompt,
            sources,
            synthesis.text,
            mapping.text if mapping else "",
            list(mapping.meta.get("option_titles") or []) if mapping else [],
            refiner.text if refiner else "",
        )
        return await self._run_generic_step(
            step.step_id, payload.antagonist_provider, prompt, run, "antagonist"
        )

    async def execute_understand_step(self, step: UnderstandStep, run: RunState) -> ProviderOutput:
        payload = step.payload
        mapping, analysis = self._require_mapping_artifact(payload.mapping_step_ids, run, "Understand")
        prompt = self._prompts.build_understand_prompt(
            payload.original_prompt, mapping.text, analysis.shape, payload.user_notes
        )
        return await self._run_generic_step(
            step.step_id,
            payload.understand_provider,
            prompt,
            run,
            "understand",
            extra={"problem_structure": analysis.shape.model_dump(mode="json")},
            use_thinking=payload.use_thinking,
        )

    async def execute_gauntlet_step(self, step: GauntletStep, run: RunState) -> ProviderOutput:
        payload = step.payload
        mapping, analysis = self._require_mapping_artifact(payload.mapping_step_ids, run, "Gauntlet")
        prompt = self._prompts.build_gauntlet_prompt(
            payload.original_prompt, mapping.text, analysis.shape, payload.user_notes
        )
        return await self._run_generic_step(
            step.step_id,
            payload.gauntlet_provider,
            prompt,
            run,
            "gauntlet",
            extra={"problem_structure": analysis.shape.model_dump(mode="json")},
            use_thinking=payload.use_thinking,
        )

    async def _run_generic_step(
        self,
        step_id: str,
        provider_id: str,
        prompt: str,
        run: RunState,
        role: str,
        *,
        extra: dict[str, Any] | None = None,
        use_thinking: bool = False,
    ) -> ProviderOutput:
        self._check_limit(provider_id, prompt)
        output = await self._call_single(
            step_id,
            provider_id,
            prompt,
            run,
            context=self._contexts.resolve(provider_id, run),
            use_thinking=use_thinking,
            timeout=self._single_call_timeout,
        )
        text = self._processor.clean(output.text)
        if not text:
            raise ProviderError(
                f"{role.capitalize()} provider {provider_id} returned an empty response",
                provider_id=provider_id,
            )
        self._streaming.dispatch_partial_delta(run.session_id, step_id, provider_id, text, is_final=True)
        return output.model_copy(
            update={
                "text": text,
                "meta": {**output.meta, f"{role}_output": {"text": text, **(extra or {})}},
            }
        )

    def _require_mapping_artifact(
        self, mapping_step_ids: list[str], run: RunState, role: str
    ) -> tuple[ProviderOutput, StructuralAnalysis]:
        mapping = self._mapping_output(mapping_step_ids, run)
        if mapping is None or not mapping.meta.get("graph_topology"):
            raise SourceResolutionError(f"{role} requires the mapper artifact.")
        cited = mapping.meta.get("citation_source_order") or {}
        if len(cited) < MIN_SYNTHESIS_SOURCES:
            raise SourceResolutionError(
                f"{role} requires at least {MIN_SYNTHESIS_SOURCES} cited sources, "
                f"but only {len(cited)} found."
            )
        return mapping, self.structural_analysis_for(mapping, run)

    def structural_analysis_for(self, mapping: ProviderOutput, run: RunState) -> StructuralAnalysis:
        """Compute (once per run) the structural analysis of the mapper's graph."""
        if run.structural_analysis is None:
            graph = ClaimGraph.from_topology(mapping.meta.get("graph_topology") or {})
            cited = mapping.meta.get("citation_source_order") or {}
            run.structural_analysis = compute_structural_analysis(
                graph, model_count=len(cited) or None, config=self._analysis_config
            )
        return run.structural_analysis

    # ========================================================================
    # Source resolution
    # ========================================================================

    def resolve_source_data(
        self,
        source_step_ids: list[str] | None,
        source_historical: SourceHistorical | None,
        run: RunState,
    ) -> dict[str, str]:
        """Provider id -> text of every usable input for a step.

        Raises:
            SourceResolutionError: If the step names no source at all
        """
        if source_historical is not None:
            return self._historical_sources(source_historical, run)

        if source_step_ids:
            sources: dict[str, str] = {}
            for step_id in source_step_ids:
                step_result = run.step_results.get(step_id)
                if step_result is None or not step_result.is_completed:
                    logger.warning(f"Source step {step_id} has no completed result")
                    continue
                if not isinstance(step_result.result, BatchResult):
                    continue
                for provider_id, output in step_result.result.results.items():
                    if output.status == "completed" and output.has_text:
                        sources[provider_id] = output.text
            return sources

        raise SourceResolutionError("No valid source specified for step.")

    def _historical_sources(self, pointer: SourceHistorical, run: RunState) -> dict[str, str]:
        seeded = run.step_results.get(FROZEN_BATCH_STEP_ID)
        if (
            pointer.response_type == StepType.BATCH
            and seeded is not None
            and seeded.is_completed
            and isinstance(seeded.result, BatchResult)
        ):
            frozen = {
                pid: output.text
                for pid, output in seeded.result.results.items()
                if output.status == "completed" and output.has_text
            }
            if frozen:
                return frozen

        if self._persistence is None:
            raise SourceResolutionError(f"No stored outputs available for turn {pointer.turn_id}")
        responses = self._persistence.get_responses_by_turn_id(
            run.session_id, pointer.turn_id, pointer.response_type.value
        )
        latest: dict[str, Any] = {}
        for response in responses:
            if response.status != "completed" or not (response.text or "").strip():
                continue
            current = latest.get(response.provider_id)
            if current is None or response.response_index >= current.response_index:
                latest[response.provider_id] = response
        return {pid: response.text for pid, response in latest.items()}

    def _latest_output(self, step_ids: list[str], run: RunState) -> ProviderOutput | None:
        for step_id in reversed(step_ids):
            step_result = run.step_results.get(step_id)
            if (
                step_result is not None
                and step_result.is_completed
                and isinstance(step_result.result, ProviderOutput)
            ):
                return step_result.result
        return None

    def _mapping_output(self, step_ids: list[str], run: RunState) -> ProviderOutput | None:
        return self._latest_output(step_ids, run)

    # ========================================================================
    # Helpers
    # ========================================================================

    def _check_limit(self, provider_id: str, prompt: str) -> None:
        if self._limits.is_within_limit(provider_id, len(prompt)):
            return
        raise InputTooLongError(
            len(prompt),
            provider_id=provider_id,
            max_chars=self._limits.get_max_input_chars(provider_id),
        )

    async def _call_single(
        self,
        step_id: str,
        provider_id: str,
        prompt: str,
        run: RunState,
        *,
        context: dict[str, Any] | None,
        use_thinking: bool = False,
        timeout: float | None = None,
    ) -> ProviderOutput:
        """Stream one provider call, salvaging partial text when it fails."""
        session_id = run.session_id
        on_partial: Callable[[str], None] = lambda text: self._streaming.dispatch_partial_delta(
            session_id, step_id, provider_id, text
        )
        try:
            output = await self._fanout.execute_single(
                prompt,
                provider_id,
                session_id=session_id,
                provider_context=context,
                timeout=timeout,
                on_partial=on_partial,
                use_thinking=use_thinking,
            )
        except Exception as e:
            classified = classify_error(e)
            self._health.record_failure(provider_id, classified)
            recovered = self._streaming.get_recovered_text(session_id, step_id, provider_id)
            if not recovered.strip():
                raise
            logger.warning(
                f"{provider_id} failed in {step_id} ({classified.type.value}); "
                f"using {len(recovered)} chars of streamed text"
            )
            return ProviderOutput(
                provider_id=provider_id,
                text=recovered,
                soft_error={"type": classified.type.value, "message": classified.message},
            )
        self._health.record_success(provider_id)
        return output

    def _emit_progress(
        self, run: RunState, step_id: str, statuses: dict[str, ProviderStatus]
    ) -> None:
        self._emit(
            WorkflowEventType.WORKFLOW_PROGRESS,
            run,
            step_id,
            phase=StepType.BATCH.value,
            provider_statuses=[s.model_dump(mode="json") for s in statuses.values()],
            completed_count=sum(
                1 for s in statuses.values() if s.status == ProviderStatusState.COMPLETED
            ),
            total_count=len(statuses),
        )

    def _emit(
        self,
        event_type: WorkflowEventType,
        run: RunState,
        step_id: str | None = None,
        **metadata: Any,
    ) -> None:
        """Emit a boundary event with the run's common fields."""
        metadata.setdefault("ai_turn_id", run.context.canonical_ai_turn_id)
        self._emitter.emit(
            WorkflowEvent(
                event_type=event_type,
                session_id=run.session_id,
                timestamp=datetime.now(timezone.utc),
                workflow_id=run.workflow_id,
                step_id=step_id,
                metadata=metadata,
            )
        )
