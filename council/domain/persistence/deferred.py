"""Background persistence that never blocks step resolution."""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DeferredFailure:
    description: str
    error: BaseException


@dataclass
class DeferredPersistence:
    """Queue of write operations run as background tasks on the event loop.

    ``submit`` schedules a callable (sync or async) and returns
    immediately. ``flush`` waits for everything submitted so far and
    returns the failures collected since the previous flush.
    """

    _pending: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)
    _failures: list[DeferredFailure] = field(default_factory=list, init=False, repr=False)

    def submit(self, operation: Callable[..., Any], *args: Any, description: str = "") -> None:
        description = description or getattr(operation, "__name__", "deferred write")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: run inline, still never raising into the caller
            self._run_sync(operation, args, description)
            return

        task = loop.create_task(self._run(operation, args, description))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, operation: Callable[..., Any], args: tuple, description: str) -> None:
        try:
            outcome = operation(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self._record(description, e)

    def _run_sync(self, operation: Callable[..., Any], args: tuple, description: str) -> None:
        try:
            operation(*args)
        except Exception as e:
            self._record(description, e)

    def _record(self, description: str, error: Exception) -> None:
        logger.warning(f"Deferred persistence failed ({description}): {error}")
        self._failures.append(DeferredFailure(description=description, error=error))

    @property
    def pending_count(self) -> int:
        return sum(1 for t in self._pending if not t.done())

    async def flush(self) -> list[DeferredFailure]:
        """Wait for all submitted writes and drain recorded failures."""
        while True:
            pending = [t for t in self._pending if not t.done()]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
        failures, self._failures = self._failures, []
        return failures
