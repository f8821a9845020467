"""Workflow event system for observer pattern notifications."""

from council.domain.events.event_types import WorkflowEventType
from council.domain.events.event import WorkflowEvent
from council.domain.events.observer import WorkflowObserver
from council.domain.events.emitter import WorkflowEventEmitter
from council.domain.events.stderr_observer import StderrEventObserver

__all__ = [
    "WorkflowEventType",
    "WorkflowEvent",
    "WorkflowObserver",
    "WorkflowEventEmitter",
    "StderrEventObserver",
]
