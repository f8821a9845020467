"""Mutable state of one workflow run."""

from dataclasses import dataclass, field
from typing import Any

from council.domain.analysis.structural_analysis import StructuralAnalysis
from council.domain.models.results import StepResult
from council.domain.models.steps import CompiledWorkflow, WorkflowContext
from council.domain.models.workflow_request import RequestType, ResolvedContext, WorkflowRequest

# Step id under which recompute runs seed their frozen batch outputs
FROZEN_BATCH_STEP_ID = "batch"


@dataclass
class RunState:
    """Everything a run accumulates while its phases execute.

    ``step_results`` is only written once a step has fully settled, so a
    phase never observes in-flight state from an earlier one.
    ``provider_contexts`` is the in-run continuation cache written by the
    batch step before it resolves; ``historical_contexts`` holds what the
    resolved context already knew.
    """

    workflow: CompiledWorkflow
    request: WorkflowRequest
    resolved_context: ResolvedContext | None = None
    step_results: dict[str, StepResult] = field(default_factory=dict)
    provider_contexts: dict[str, dict[str, Any]] = field(default_factory=dict)
    historical_contexts: dict[str, dict[str, Any]] = field(default_factory=dict)
    structural_analysis: StructuralAnalysis | None = None

    @property
    def context(self) -> WorkflowContext:
        return self.workflow.context

    @property
    def session_id(self) -> str:
        return self.workflow.context.session_id

    @property
    def workflow_id(self) -> str:
        return self.workflow.workflow_id

    @property
    def request_type(self) -> RequestType:
        if self.resolved_context is not None:
            return self.resolved_context.type
        return self.request.type

    @property
    def is_recompute(self) -> bool:
        return self.request_type == RequestType.RECOMPUTE
