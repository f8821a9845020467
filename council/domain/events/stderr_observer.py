"""Stderr event observer for CLI integration."""

import click

from council.domain.events.event import WorkflowEvent
from council.domain.events.event_types import WorkflowEventType


class StderrEventObserver:
    """Emits events as structured lines to stderr.

    Streaming deltas are skipped unless ``show_partials`` is set, since a
    single provider can produce hundreds of them per step.
    """

    def __init__(self, show_partials: bool = False) -> None:
        self.show_partials = show_partials

    def on_event(self, event: WorkflowEvent) -> None:
        """Emit event as structured line to stderr."""
        if event.event_type == WorkflowEventType.PARTIAL_RESULT and not self.show_partials:
            return
        parts = [f"[EVENT] {event.event_type.value}", f"session={event.session_id}"]
        if event.step_id:
            parts.append(f"step={event.step_id}")
        for key in ("status", "phase", "halt_reason"):
            value = event.metadata.get(key)
            if value:
                parts.append(f"{key}={value}")
        click.echo(" ".join(parts), err=True)
