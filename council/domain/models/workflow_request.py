"""Workflow request and resolved context models.

A request is the caller's primitive (initialize, extend or recompute). The
resolved context is produced by an external resolver from stored history
and is consumed read-only by the compiler and engine.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RequestType(str, Enum):
    """Workflow primitive tag."""

    INITIALIZE = "initialize"
    EXTEND = "extend"
    RECOMPUTE = "recompute"


class StepType(str, Enum):
    """Kinds of steps a compiled workflow may contain."""

    BATCH = "batch"
    MAPPING = "mapping"
    SYNTHESIS = "synthesis"
    REFINER = "refiner"
    ANTAGONIST = "antagonist"
    UNDERSTAND = "understand"
    GAUNTLET = "gauntlet"


class WorkflowRequest(BaseModel):
    """Immutable caller request.

    Field validation per request type happens in the compiler so that the
    error can name the primitive and the missing field.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: RequestType
    session_id: str | None = None
    user_message: str = ""
    providers: list[str] = Field(default_factory=list)
    include_mapping: bool = False

    # Downstream role assignments (None = phase not requested)
    mapper: str | None = None
    synthesizer: str | None = None
    refiner: str | None = None
    antagonist: str | None = None
    understand: str | None = None
    gauntlet: str | None = None

    mode: str | None = None
    use_thinking: bool = False
    provider_meta: dict[str, Any] = Field(default_factory=dict)
    user_notes: str | None = None

    # Recompute
    source_turn_id: str | None = None
    step_type: StepType | None = None
    target_provider: str | None = None

    # Client-side turn ids, replaced by canonical ids after persistence
    client_user_turn_id: str | None = None
    client_ai_turn_id: str | None = None


class ResolvedContext(BaseModel):
    """History resolved for one request.

    Provider context values are opaque continuation blobs owned by the
    provider boundary.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: RequestType
    session_id: str | None = None

    # Extend
    last_turn_id: str | None = None
    provider_contexts: dict[str, dict[str, Any]] | None = None
    previous_context: str | None = None

    # Recompute
    source_turn_id: str | None = None
    source_user_message: str | None = None
    step_type: StepType | None = None
    target_provider: str | None = None
    frozen_batch_outputs: dict[str, Any] | None = None
    provider_contexts_at_source_turn: dict[str, dict[str, Any]] | None = None
