"""Workflow event types emitted at the engine boundary."""

from enum import Enum


class WorkflowEventType(str, Enum):
    """Typed workflow events, each correlated by session and step id."""

    # Progress
    WORKFLOW_PROGRESS = "workflow_progress"
    WORKFLOW_STEP_UPDATE = "workflow_step_update"
    WORKFLOW_PARTIAL_COMPLETE = "workflow_partial_complete"

    # Streaming
    PARTIAL_RESULT = "partial_result"

    # Artifacts
    MAPPER_ARTIFACT_READY = "mapper_artifact_ready"

    # Turns
    TURN_CREATED = "turn_created"
    TURN_FINALIZED = "turn_finalized"

    # Terminal
    WORKFLOW_COMPLETE = "workflow_complete"
