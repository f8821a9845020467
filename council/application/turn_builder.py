"""Builds persisted results and turn-finalized payloads from a run's step results."""

from datetime import datetime, timezone
from typing import Any, Iterator, Sequence

from council.domain.constants import DEFAULT_THREAD_ID
from council.domain.models.consensus import ConsensusGate
from council.domain.models.results import BatchResult, ProviderOutput, StepResult
from council.domain.models.workflow_request import StepType

# Result group per step type, as understood by the persistence collaborator
OUTPUT_GROUPS: dict[StepType, str] = {
    StepType.BATCH: "batch_outputs",
    StepType.MAPPING: "mapping_outputs",
    StepType.SYNTHESIS: "synthesis_outputs",
    StepType.REFINER: "refiner_outputs",
    StepType.ANTAGONIST: "antagonist_outputs",
    StepType.UNDERSTAND: "understand_outputs",
    StepType.GAUNTLET: "gauntlet_outputs",
}

_PROVIDER_FIELDS: dict[StepType, str] = {
    StepType.MAPPING: "mapping_provider",
    StepType.SYNTHESIS: "synthesis_provider",
    StepType.REFINER: "refiner_provider",
    StepType.ANTAGONIST: "antagonist_provider",
    StepType.UNDERSTAND: "understand_provider",
    StepType.GAUNTLET: "gauntlet_provider",
}


def _output_data(output: ProviderOutput) -> dict[str, Any]:
    data = {
        "provider_id": output.provider_id,
        "text": output.text,
        "status": output.status,
        "meta": dict(output.meta),
    }
    if output.soft_error:
        data["soft_error"] = dict(output.soft_error)
    return data


def _error_data(provider_id: str, error: str | None) -> dict[str, Any]:
    message = error or "Unknown error"
    return {"provider_id": provider_id, "text": "", "status": "error", "meta": {"error": message}}


def _step_entries(step: Any, step_result: StepResult) -> Iterator[tuple[StepType, str, dict[str, Any]]]:
    """Yield (step type, provider id, response data) for one settled step."""
    step_type = StepType(step.type)

    if step_type == StepType.BATCH:
        if step_result.is_completed and isinstance(step_result.result, BatchResult):
            for provider_id, output in step_result.result.results.items():
                yield step_type, provider_id, _output_data(output)
        elif not step_result.is_completed:
            for provider_id in step.payload.providers:
                yield step_type, provider_id, _error_data(provider_id, step_result.error)
        return

    if step_result.is_completed and isinstance(step_result.result, ProviderOutput):
        output = step_result.result
        yield step_type, output.provider_id, _output_data(output)
    elif not step_result.is_completed:
        provider_id = getattr(step.payload, _PROVIDER_FIELDS[step_type])
        yield step_type, provider_id, _error_data(provider_id, step_result.error)


def build_persistence_result(
    steps: Sequence[Any],
    step_results: dict[str, StepResult],
    *,
    session_id: str | None = None,
    thread_id: str = DEFAULT_THREAD_ID,
    meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Group a run's settled step results for the persistence collaborator.

    Steps that never ran are left out. A failed batch marks each of its
    providers with ``status="error"`` so the stored turn still lists them.
    """
    result: dict[str, Any] = {group: {} for group in OUTPUT_GROUPS.values()}
    result["session_id"] = session_id
    result["thread_id"] = thread_id
    result["meta"] = dict(meta or {})

    for step in steps:
        step_result = step_results.get(step.step_id)
        if step_result is None:
            continue
        for step_type, provider_id, data in _step_entries(step, step_result):
            result[OUTPUT_GROUPS[step_type]][provider_id] = data
    return result


def build_turn_finalized(
    steps: Sequence[Any],
    step_results: dict[str, StepResult],
    *,
    session_id: str,
    user_turn_id: str,
    ai_turn_id: str,
    user_message: str,
    workflow_control: ConsensusGate | None = None,
    thread_id: str = DEFAULT_THREAD_ID,
) -> dict[str, Any] | None:
    """Payload of the ``TURN_FINALIZED`` event.

    Returns:
        The payload, or None when the run produced no responses at all.
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    responses: dict[StepType, dict[str, list[dict[str, Any]]]] = {t: {} for t in OUTPUT_GROUPS}
    primary: dict[StepType, str] = {}

    for step in steps:
        step_result = step_results.get(step.step_id)
        if step_result is None:
            continue
        for step_type, provider_id, data in _step_entries(step, step_result):
            entry = {**data, "created_at": timestamp, "updated_at": timestamp}
            if step_type == StepType.BATCH:
                responses[step_type][provider_id] = [entry]
            else:
                responses[step_type].setdefault(provider_id, []).append(entry)
            if step_result.is_completed or step_type not in primary:
                primary[step_type] = provider_id

    if not any(responses.values()):
        return None

    consensus_only = bool(workflow_control and workflow_control.consensus_only)
    present = {StepType(step.type) for step in steps}
    requested = {t.value: t in present for t in OUTPUT_GROUPS if t != StepType.BATCH}
    requested[StepType.REFINER.value] = requested[StepType.REFINER.value] and not consensus_only
    requested[StepType.ANTAGONIST.value] = (
        requested[StepType.ANTAGONIST.value] and not consensus_only
    )

    meta: dict[str, Any] = {
        "synthesizer": primary.get(StepType.SYNTHESIS),
        "mapper": primary.get(StepType.MAPPING),
        "requested_features": requested,
    }
    if workflow_control is not None:
        meta["workflow_control"] = workflow_control.model_dump(mode="json")

    ai_turn: dict[str, Any] = {
        "id": ai_turn_id,
        "type": "ai",
        "user_turn_id": user_turn_id,
        "session_id": session_id,
        "thread_id": thread_id,
        "created_at": timestamp,
        "meta": meta,
    }
    for step_type, by_provider in responses.items():
        ai_turn[f"{step_type.value}_responses"] = by_provider

    return {
        "user_turn_id": user_turn_id,
        "ai_turn_id": ai_turn_id,
        "turn": {
            "user": {
                "id": user_turn_id,
                "type": "user",
                "text": user_message,
                "created_at": timestamp,
                "session_id": session_id,
            },
            "ai": ai_turn,
        },
    }
