"""Domain models for the council workflow engine."""

from .workflow_request import RequestType, ResolvedContext, StepType, WorkflowRequest
from .results import (
    BatchResult,
    ClassifiedError,
    ErrorType,
    ProviderOutput,
    ProviderStatus,
    ProviderStatusState,
    StepResult,
    StepStatus,
)
from .claim_graph import Claim, ClaimGraph, ClaimRole, ClaimType, Edge, EdgeType
from .consensus import ConsensusGate, GateReason, ProblemStructure, ShapePattern
from .steps import CompiledWorkflow, WorkflowContext, WorkflowStep
from .session import ProviderResponseRecord, SessionRecord, TurnRecord, TurnRole


__all__ = [
    "RequestType",
    "ResolvedContext",
    "StepType",
    "WorkflowRequest",
    "BatchResult",
    "ClassifiedError",
    "ErrorType",
    "ProviderOutput",
    "ProviderStatus",
    "ProviderStatusState",
    "StepResult",
    "StepStatus",
    "Claim",
    "ClaimGraph",
    "ClaimRole",
    "ClaimType",
    "Edge",
    "EdgeType",
    "ConsensusGate",
    "GateReason",
    "ProblemStructure",
    "ShapePattern",
    "CompiledWorkflow",
    "WorkflowContext",
    "WorkflowStep",
    "ProviderResponseRecord",
    "SessionRecord",
    "TurnRecord",
    "TurnRole",
]
