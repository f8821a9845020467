"""WorkflowCompiler - request plus resolved context to ordered steps.

Pure and synchronous: everything needed comes from the request and the
resolved context, never from storage.
"""

import logging
import secrets
import string
import time
from typing import Any, Callable

from council.domain.constants import DEFAULT_THREAD_ID
from council.domain.errors import WorkflowCompileError
from council.domain.models.steps import (
    AntagonistPayload,
    AntagonistStep,
    BatchPayload,
    BatchStep,
    CompiledWorkflow,
    GauntletPayload,
    GauntletStep,
    MappingPayload,
    MappingStep,
    ProviderContinuation,
    RefinerPayload,
    RefinerStep,
    SourceHistorical,
    SynthesisPayload,
    SynthesisStep,
    UnderstandPayload,
    UnderstandStep,
    WorkflowContext,
)
from council.domain.models.workflow_request import (
    RequestType,
    ResolvedContext,
    StepType,
    WorkflowRequest,
)

logger = logging.getLogger(__name__)

_RECOMPUTABLE = (StepType.BATCH, StepType.MAPPING)
_ALPHABET = string.ascii_lowercase + string.digits


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _now_ms() -> int:
    return int(time.time() * 1000)


def _continuation(raw: dict[str, Any] | None) -> ProviderContinuation | None:
    """Wrap a stored context; blobs already wrapped as ``{"meta": ...}`` are unwrapped."""
    if not raw:
        return None
    meta = raw.get("meta") if isinstance(raw.get("meta"), dict) else raw
    return ProviderContinuation(meta=meta)


class WorkflowCompiler:
    """Compiles initialize, extend and recompute primitives into steps.

    Args:
        default_mapper: Mapper used when the request names none and lists no providers
        clock: Millisecond clock used for step and workflow ids
    """

    def __init__(
        self,
        default_mapper: str | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.default_mapper = default_mapper
        self._clock = clock

    def compile(
        self, request: WorkflowRequest, resolved_context: ResolvedContext | None
    ) -> CompiledWorkflow:
        """Validate inputs and build the step list.

        Raises:
            WorkflowCompileError: If a required request or context field is missing
        """
        if resolved_context is None:
            raise WorkflowCompileError("resolved_context required", field="resolved_context")
        if resolved_context.type != request.type:
            raise WorkflowCompileError(
                f"Context type '{resolved_context.type.value}' does not match "
                f"request type '{request.type.value}'",
                field="type",
            )

        self._validate_request(request)
        self._validate_context(resolved_context)

        ts = self._clock()
        workflow_id = f"wf-{resolved_context.type.value}-{ts}-{_random_suffix(9)}"
        steps: list[Any] = []
        batch_step_id: str | None = None

        if resolved_context.type == RequestType.RECOMPUTE:
            if resolved_context.step_type == StepType.BATCH:
                batch = self._recompute_batch_step(request, resolved_context, ts)
                steps.append(batch)
                batch_step_id = batch.step_id
            else:
                logger.debug("Recompute: skipping batch, using frozen outputs")
        elif request.providers:
            batch = self._batch_step(request, resolved_context, ts)
            steps.append(batch)
            batch_step_id = batch.step_id

        mapping_step_id: str | None = None
        if self._needs_mapping(request, resolved_context):
            mapping = self._mapping_step(request, resolved_context, batch_step_id, ts)
            steps.append(mapping)
            mapping_step_id = mapping.step_id

        if resolved_context.type != RequestType.RECOMPUTE:
            steps.extend(self._downstream_steps(request, batch_step_id, mapping_step_id, ts))

        logger.info(f"Compiled {resolved_context.type.value} workflow {workflow_id}: {len(steps)} step(s)")

        return CompiledWorkflow(
            workflow_id=workflow_id,
            context=self._workflow_context(request, resolved_context, ts),
            steps=steps,
            mode=request.mode,
        )

    # ========================================================================
    # Step creators
    # ========================================================================

    def _batch_step(self, request: WorkflowRequest, context: ResolvedContext, ts: int) -> BatchStep:
        provider_contexts = None
        if context.type == RequestType.EXTEND and context.provider_contexts:
            provider_contexts = {
                pid: cont
                for pid, raw in context.provider_contexts.items()
                if (cont := _continuation(raw)) is not None
            }
        return BatchStep(
            step_id=f"batch-{ts}",
            payload=BatchPayload(
                prompt=request.user_message,
                providers=list(request.providers),
                provider_contexts=provider_contexts,
                previous_context=context.previous_context,
                provider_meta=dict(request.provider_meta),
                use_thinking=request.use_thinking,
            ),
        )

    def _recompute_batch_step(
        self, request: WorkflowRequest, context: ResolvedContext, ts: int
    ) -> BatchStep:
        provider = context.target_provider or ""
        raw = (context.provider_contexts_at_source_turn or {}).get(provider)
        continuation = _continuation(raw)
        return BatchStep(
            step_id=f"batch-retry-{ts}",
            payload=BatchPayload(
                prompt=context.source_user_message or "",
                providers=[provider],
                provider_contexts={provider: continuation} if continuation else None,
                use_thinking=request.use_thinking,
            ),
        )

    def _mapping_step(
        self,
        request: WorkflowRequest,
        context: ResolvedContext,
        batch_step_id: str | None,
        ts: int,
    ) -> MappingStep:
        if context.type == RequestType.RECOMPUTE:
            mapper = context.target_provider or ""
            return MappingStep(
                step_id=f"mapping-{mapper}-{ts}",
                payload=MappingPayload(
                    mapping_provider=mapper,
                    original_prompt=context.source_user_message or "",
                    source_historical=SourceHistorical(
                        turn_id=context.source_turn_id or "", response_type=StepType.BATCH
                    ),
                    use_thinking=request.use_thinking,
                ),
            )

        mapper = self._mapper_for(request)
        return MappingStep(
            step_id=f"mapping-{mapper}-{ts}",
            payload=MappingPayload(
                mapping_provider=mapper,
                original_prompt=request.user_message,
                source_step_ids=[batch_step_id] if batch_step_id else None,
                continue_from_batch_step=batch_step_id,
                provider_order=list(request.providers) or None,
                use_thinking=request.use_thinking and mapper == "chatgpt",
            ),
        )

    def _downstream_steps(
        self,
        request: WorkflowRequest,
        batch_step_id: str | None,
        mapping_step_id: str | None,
        ts: int,
    ) -> list[Any]:
        source_ids = [batch_step_id] if batch_step_id else None
        mapping_ids = [mapping_step_id] if mapping_step_id else []
        steps: list[Any] = []

        synthesis_ids: list[str] = []
        if request.synthesizer:
            step = SynthesisStep(
                step_id=f"synthesis-{request.synthesizer}-{ts}",
                payload=SynthesisPayload(
                    synthesis_provider=request.synthesizer,
                    original_prompt=request.user_message,
                    source_step_ids=source_ids,
                    continue_from_batch_step=batch_step_id,
                    mapping_step_ids=mapping_ids,
                    use_thinking=request.use_thinking,
                ),
            )
            steps.append(step)
            synthesis_ids = [step.step_id]

        refiner_ids: list[str] = []
        if request.refiner:
            step = RefinerStep(
                step_id=f"refiner-{request.refiner}-{ts}",
                payload=RefinerPayload(
                    refiner_provider=request.refiner,
                    original_prompt=request.user_message,
                    source_step_ids=source_ids,
                    synthesis_step_ids=synthesis_ids,
                    mapping_step_ids=mapping_ids,
                ),
            )
            steps.append(step)
            refiner_ids = [step.step_id]

        if request.antagonist:
            steps.append(
                AntagonistStep(
                    step_id=f"antagonist-{request.antagonist}-{ts}",
                    payload=AntagonistPayload(
                        antagonist_provider=request.antagonist,
                        original_prompt=request.user_message,
                        source_step_ids=source_ids,
                        synthesis_step_ids=synthesis_ids,
                        mapping_step_ids=mapping_ids,
                        refiner_step_ids=refiner_ids,
                    ),
                )
            )

        if request.understand:
            steps.append(
                UnderstandStep(
                    step_id=f"understand-{request.understand}-{ts}",
                    payload=UnderstandPayload(
                        understand_provider=request.understand,
                        original_prompt=request.user_message,
                        mapping_step_ids=mapping_ids,
                        user_notes=request.user_notes,
                        use_thinking=request.use_thinking,
                    ),
                )
            )

        if request.gauntlet:
            steps.append(
                GauntletStep(
                    step_id=f"gauntlet-{request.gauntlet}-{ts}",
                    payload=GauntletPayload(
                        gauntlet_provider=request.gauntlet,
                        original_prompt=request.user_message,
                        mapping_step_ids=mapping_ids,
                        user_notes=request.user_notes,
                        use_thinking=request.use_thinking,
                    ),
                )
            )
        return steps

    # ========================================================================
    # Decisions
    # ========================================================================

    def _needs_mapping(self, request: WorkflowRequest, context: ResolvedContext) -> bool:
        if context.type == RequestType.RECOMPUTE:
            return context.step_type == StepType.MAPPING
        return request.include_mapping

    def _mapper_for(self, request: WorkflowRequest) -> str:
        mapper = request.mapper or (request.providers[0] if request.providers else None)
        mapper = mapper or self.default_mapper
        if not mapper:
            raise WorkflowCompileError("Mapping requested but no mapper available", field="mapper")
        return mapper

    def _workflow_context(
        self, request: WorkflowRequest, context: ResolvedContext, ts: int
    ) -> WorkflowContext:
        session_created = False
        if context.type == RequestType.INITIALIZE:
            session_id = request.session_id or f"session-{ts}-{_random_suffix(6)}"
            session_created = True
        else:
            session_id = context.session_id or ""

        is_recompute = context.type == RequestType.RECOMPUTE
        return WorkflowContext(
            session_id=session_id,
            thread_id=DEFAULT_THREAD_ID,
            target_user_turn_id=(context.source_turn_id or "") if is_recompute else "",
            session_created=session_created,
            user_message=(context.source_user_message or "") if is_recompute else request.user_message,
            canonical_user_turn_id=request.client_user_turn_id,
            canonical_ai_turn_id=request.client_ai_turn_id,
        )

    # ========================================================================
    # Validation
    # ========================================================================

    def _validate_request(self, request: WorkflowRequest) -> None:
        if request.type == RequestType.INITIALIZE:
            if not request.user_message.strip():
                raise WorkflowCompileError("Initialize: userMessage required", field="user_message")
            if not request.providers:
                raise WorkflowCompileError("Initialize: providers required", field="providers")

        elif request.type == RequestType.EXTEND:
            if not request.session_id:
                raise WorkflowCompileError("Extend: sessionId required", field="session_id")
            if not request.user_message.strip():
                raise WorkflowCompileError("Extend: userMessage required", field="user_message")
            if not request.providers:
                raise WorkflowCompileError("Extend: providers required", field="providers")

        elif request.type == RequestType.RECOMPUTE:
            if not request.session_id:
                raise WorkflowCompileError("Recompute: sessionId required", field="session_id")
            if not request.source_turn_id:
                raise WorkflowCompileError("Recompute: sourceTurnId required", field="source_turn_id")
            if request.step_type is None:
                raise WorkflowCompileError("Recompute: stepType required", field="step_type")
            if not request.target_provider:
                raise WorkflowCompileError("Recompute: targetProvider required", field="target_provider")
            if request.step_type not in _RECOMPUTABLE:
                raise WorkflowCompileError(
                    f"Recompute: unsupported stepType '{request.step_type.value}' for foundation compiler",
                    field="step_type",
                )

    def _validate_context(self, context: ResolvedContext) -> None:
        if context.type == RequestType.EXTEND:
            if not context.session_id:
                raise WorkflowCompileError("Extend: sessionId required", field="session_id")
            if not context.last_turn_id:
                raise WorkflowCompileError("Extend: lastTurnId required", field="last_turn_id")
            if context.provider_contexts is None:
                raise WorkflowCompileError("Extend: providerContexts required", field="provider_contexts")

        elif context.type == RequestType.RECOMPUTE:
            if not context.session_id:
                raise WorkflowCompileError("Recompute: sessionId required", field="session_id")
            if not context.source_turn_id:
                raise WorkflowCompileError("Recompute: sourceTurnId required", field="source_turn_id")
            if context.step_type is None:
                raise WorkflowCompileError("Recompute: stepType required", field="step_type")
            if not context.target_provider:
                raise WorkflowCompileError("Recompute: targetProvider required", field="target_provider")
            if context.step_type != StepType.BATCH and not context.frozen_batch_outputs:
                raise WorkflowCompileError(
                    "Recompute: frozenBatchOutputs required for non-batch recompute",
                    field="frozen_batch_outputs",
                )
