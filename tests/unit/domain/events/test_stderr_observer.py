"""Tests for StderrEventObserver."""

from datetime import datetime, timezone
from unittest.mock import patch

from council.domain.events.event import WorkflowEvent
from council.domain.events.event_types import WorkflowEventType
from council.domain.events.stderr_observer import StderrEventObserver


def _event(event_type: WorkflowEventType, step_id: str | None = None, **metadata) -> WorkflowEvent:
    return WorkflowEvent(
        event_type=event_type,
        session_id="session-123",
        timestamp=datetime.now(timezone.utc),
        step_id=step_id,
        metadata=metadata,
    )


class TestStderrEventObserver:
    """Tests for StderrEventObserver."""

    def test_emits_event_type_and_session_to_stderr(self) -> None:
        observer = StderrEventObserver()

        with patch("click.echo") as mock_echo:
            observer.on_event(_event(WorkflowEventType.TURN_CREATED))
            output = mock_echo.call_args[0][0]
            assert output == "[EVENT] turn_created session=session-123"
            assert mock_echo.call_args[1]["err"] is True

    def test_includes_step_and_status(self) -> None:
        observer = StderrEventObserver()

        with patch("click.echo") as mock_echo:
            observer.on_event(
                _event(WorkflowEventType.WORKFLOW_STEP_UPDATE, "batch-1", status="completed")
            )
            output = mock_echo.call_args[0][0]
            assert output == (
                "[EVENT] workflow_step_update session=session-123 step=batch-1 status=completed"
            )

    def test_includes_halt_reason(self) -> None:
        observer = StderrEventObserver()

        with patch("click.echo") as mock_echo:
            observer.on_event(
                _event(WorkflowEventType.WORKFLOW_COMPLETE, halt_reason="insufficient_witnesses")
            )
            assert "halt_reason=insufficient_witnesses" in mock_echo.call_args[0][0]

    def test_skips_partials_by_default(self) -> None:
        observer = StderrEventObserver()

        with patch("click.echo") as mock_echo:
            observer.on_event(_event(WorkflowEventType.PARTIAL_RESULT, "batch-1"))
            mock_echo.assert_not_called()

    def test_shows_partials_when_enabled(self) -> None:
        observer = StderrEventObserver(show_partials=True)

        with patch("click.echo") as mock_echo:
            observer.on_event(_event(WorkflowEventType.PARTIAL_RESULT, "batch-1"))
            mock_echo.assert_called_once()
