"""Fan-out collaborator contract.

The engine never talks to providers directly. A fan-out collaborator runs
calls concurrently, reports progress through callbacks and finally hands
every outcome to ``on_all_complete``, whose return value (or exception)
becomes the result of ``execute_parallel_fanout``.
"""

from dataclasses import dataclass
from typing import Any, Callable, Protocol

from council.domain.models.results import ProviderOutput
from council.domain.providers.ai_provider import ProviderResponse


@dataclass
class FanoutCallbacks:
    on_partial: Callable[[str, str], None]
    on_provider_complete: Callable[[str, ProviderResponse], None]
    on_error: Callable[[str, BaseException], None]
    on_all_complete: Callable[[dict[str, ProviderResponse], dict[str, BaseException]], Any]


class FanoutCollaborator(Protocol):
    async def execute_parallel_fanout(
        self,
        prompt: str,
        provider_ids: list[str],
        callbacks: FanoutCallbacks,
        *,
        session_id: str,
        provider_contexts: dict[str, dict[str, Any]] | None = None,
        use_thinking: bool = False,
        timeout: float | None = None,
    ) -> Any:
        ...

    async def execute_single(
        self,
        prompt: str,
        provider_id: str,
        *,
        session_id: str,
        provider_context: dict[str, Any] | None = None,
        timeout: float | None = None,
        on_partial: Callable[[str], None] | None = None,
        use_thinking: bool = False,
    ) -> ProviderOutput:
        ...

    def cancel(self, session_id: str) -> None:
        ...
