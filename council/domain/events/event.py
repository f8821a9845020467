"""Workflow event payload model."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from council.domain.events.event_types import WorkflowEventType


class WorkflowEvent(BaseModel):
    """Immutable event payload for workflow notifications."""

    model_config = {"frozen": True}

    event_type: WorkflowEventType
    session_id: str
    timestamp: datetime
    workflow_id: str | None = None
    step_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
