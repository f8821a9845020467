"""Delta reconciliation between successive full-text snapshots.

Providers report the whole text accumulated so far on every partial. The
manager keeps the last snapshot per ``(session, step, provider)`` and turns
each new snapshot into the smallest forward delta worth sending.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from council.application.config_models import StreamingConfig
from council.domain.events.emitter import WorkflowEventEmitter
from council.domain.events.event import WorkflowEvent
from council.domain.events.event_types import WorkflowEventType

logger = logging.getLogger(__name__)

_StreamKey = tuple[str, str, str]


@dataclass
class _RegressionWarnings:
    count: int = 0
    last_at: float | None = None


def _common_prefix_length(a: str, b: str) -> int:
    limit = min(len(a), len(b))
    i = 0
    while i < limit and a[i] == b[i]:
        i += 1
    return i


@dataclass
class StreamingManager:
    """Per-engine snapshot cache; cleared per session at the end of a run."""

    event_emitter: WorkflowEventEmitter | None = None
    config: StreamingConfig = field(default_factory=StreamingConfig)
    clock: Callable[[], float] = time.monotonic
    _snapshots: dict[_StreamKey, str] = field(default_factory=dict, init=False, repr=False)
    _warnings: dict[tuple[str, str], _RegressionWarnings] = field(
        default_factory=dict, init=False, repr=False
    )

    def make_delta(self, session_id: str, step_id: str, provider_id: str, full_text: str) -> str:
        """Return the text to emit for a new snapshot (possibly empty).

        Appends emit only the new tail. When the common prefix covers less
        than ``append_prefix_ratio`` of the previous snapshot the stream is
        treated as diverged and resynchronised from the first differing
        character. Shrinking snapshots never emit.
        """
        full_text = full_text or ""
        if not session_id:
            return full_text

        key = (session_id, step_id, provider_id)
        previous = self._snapshots.get(key, "")

        if not previous and full_text:
            self._snapshots[key] = full_text
            return full_text

        if len(full_text) > len(previous):
            prefix = _common_prefix_length(previous, full_text)
            self._snapshots[key] = full_text
            if prefix >= len(previous) * self.config.append_prefix_ratio:
                return full_text[len(previous):]
            logger.debug(
                f"Stream divergence for {provider_id} in {step_id}: "
                f"common prefix {prefix}/{len(previous)}"
            )
            return full_text[prefix:]

        if full_text == previous:
            return ""

        regression = len(previous) - len(full_text)
        small = (
            regression <= self.config.regression_chars
            or regression <= len(previous) * self.config.regression_ratio
        )
        if not small:
            self._warn_regression(session_id, provider_id, len(previous), len(full_text))
        self._snapshots[key] = full_text
        return ""

    def _warn_regression(
        self, session_id: str, provider_id: str, previous_len: int, new_len: int
    ) -> None:
        state = self._warnings.setdefault((session_id, provider_id), _RegressionWarnings())
        now = self.clock()
        if state.count >= self.config.warning_limit:
            return
        if state.last_at is not None and now - state.last_at <= self.config.warning_cooldown_seconds:
            return
        state.count += 1
        state.last_at = now
        logger.warning(
            f"Significant text regression for {provider_id}: "
            f"{previous_len} -> {new_len} chars"
        )

    def dispatch_partial_delta(
        self,
        session_id: str,
        step_id: str,
        provider_id: str,
        text: str,
        *,
        is_final: bool = False,
    ) -> bool:
        """Compute a delta and emit it as ``PARTIAL_RESULT``.

        A final emission force-replaces the stored snapshot and emits the
        text in full, since terminal cleanup may legitimately shrink it.

        Returns:
            True when a non-empty chunk was emitted.
        """
        if is_final:
            delta = text or ""
            self._snapshots[(session_id, step_id, provider_id)] = delta
        else:
            delta = self.make_delta(session_id, step_id, provider_id, text)

        if not delta:
            return False

        if self.event_emitter is not None:
            chunk: dict[str, object] = {"text": delta}
            if is_final:
                chunk["is_final"] = True
            self.event_emitter.emit(
                WorkflowEvent(
                    event_type=WorkflowEventType.PARTIAL_RESULT,
                    session_id=session_id,
                    timestamp=datetime.now(timezone.utc),
                    step_id=step_id,
                    metadata={"provider_id": provider_id, "chunk": chunk},
                )
            )
        return True

    def get_recovered_text(self, session_id: str, step_id: str, provider_id: str) -> str:
        """Last snapshot seen for a stream, used to salvage failed calls."""
        return self._snapshots.get((session_id, step_id, provider_id), "")

    def clear_cache(self, session_id: str) -> None:
        stale = [k for k in self._snapshots if k[0] == session_id]
        for key in stale:
            del self._snapshots[key]
        for key in [k for k in self._warnings if k[0] == session_id]:
            del self._warnings[key]
        logger.debug(f"Cleared {len(stale)} stream snapshots for session {session_id}")
