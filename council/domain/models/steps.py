"""Compiled workflow steps.

Each step type carries its own payload model; ``WorkflowStep`` is a tagged
union discriminated on ``type``.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from council.domain.models.consensus import ConsensusGate
from council.domain.models.workflow_request import StepType


class ProviderContinuation(BaseModel):
    """Opaque continuation blob for one provider plus the continue flag."""

    model_config = ConfigDict(frozen=True)

    meta: dict[str, Any] = Field(default_factory=dict)
    continue_thread: bool = True


class SourceHistorical(BaseModel):
    """Pointer to a stored turn whose outputs feed a recomputed step."""

    model_config = ConfigDict(frozen=True)

    turn_id: str
    response_type: StepType = StepType.BATCH


# ============================================================================
# Payloads
# ============================================================================


class BatchPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    prompt: str
    providers: list[str]
    provider_contexts: dict[str, ProviderContinuation] | None = None
    previous_context: str | None = None
    provider_meta: dict[str, Any] = Field(default_factory=dict)
    use_thinking: bool = False


class MappingPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    mapping_provider: str
    original_prompt: str
    source_step_ids: list[str] | None = None
    source_historical: SourceHistorical | None = None
    continue_from_batch_step: str | None = None
    provider_order: list[str] | None = None
    use_thinking: bool = False
    attempt_number: int = 1


class SynthesisPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    synthesis_provider: str
    original_prompt: str
    source_step_ids: list[str] | None = None
    source_historical: SourceHistorical | None = None
    continue_from_batch_step: str | None = None
    mapping_step_ids: list[str] = Field(default_factory=list)
    use_thinking: bool = False


class RefinerPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    refiner_provider: str
    original_prompt: str
    source_step_ids: list[str] | None = None
    source_historical: SourceHistorical | None = None
    synthesis_step_ids: list[str] = Field(default_factory=list)
    mapping_step_ids: list[str] = Field(default_factory=list)


class AntagonistPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    antagonist_provider: str
    original_prompt: str
    source_step_ids: list[str] | None = None
    source_historical: SourceHistorical | None = None
    synthesis_step_ids: list[str] = Field(default_factory=list)
    mapping_step_ids: list[str] = Field(default_factory=list)
    refiner_step_ids: list[str] = Field(default_factory=list)


class UnderstandPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    understand_provider: str
    original_prompt: str
    mapping_step_ids: list[str] = Field(default_factory=list)
    user_notes: str | None = None
    use_thinking: bool = False


class GauntletPayload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    gauntlet_provider: str
    original_prompt: str
    mapping_step_ids: list[str] = Field(default_factory=list)
    user_notes: str | None = None
    use_thinking: bool = False


# ============================================================================
# Steps
# ============================================================================


class BatchStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    type: Literal["batch"] = "batch"
    payload: BatchPayload


class MappingStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    type: Literal["mapping"] = "mapping"
    payload: MappingPayload


class SynthesisStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    type: Literal["synthesis"] = "synthesis"
    payload: SynthesisPayload


class RefinerStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    type: Literal["refiner"] = "refiner"
    payload: RefinerPayload


class AntagonistStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    type: Literal["antagonist"] = "antagonist"
    payload: AntagonistPayload


class UnderstandStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    type: Literal["understand"] = "understand"
    payload: UnderstandPayload


class GauntletStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    type: Literal["gauntlet"] = "gauntlet"
    payload: GauntletPayload


WorkflowStep = Annotated[
    Union[
        BatchStep,
        MappingStep,
        SynthesisStep,
        RefinerStep,
        AntagonistStep,
        UnderstandStep,
        GauntletStep,
    ],
    Field(discriminator="type"),
]


class WorkflowContext(BaseModel):
    """Per-run context produced by the compiler.

    The engine fills in canonical turn ids and the consensus gate while
    the run progresses.
    """

    session_id: str
    thread_id: str
    target_user_turn_id: str = ""
    session_created: bool = False
    user_message: str = ""
    canonical_user_turn_id: str | None = None
    canonical_ai_turn_id: str | None = None
    workflow_control: ConsensusGate | None = None


class CompiledWorkflow(BaseModel):
    """Output of the compiler: ordered steps plus the run context."""

    workflow_id: str
    context: WorkflowContext
    steps: list[WorkflowStep]
    mode: str | None = None

    def steps_of(self, step_type: StepType | str) -> list[Any]:
        """Return steps of one type in compile order."""
        return [step for step in self.steps if step.type == step_type]
