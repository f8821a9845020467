"""AsyncProviderFanout - concurrent provider execution.

Centralizes provider lookup through the factory, per-call timeouts taken
from the caller or provider metadata, and cancellation by session id.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any

from council.domain.errors import ProviderError
from council.domain.models.results import ProviderOutput
from council.domain.providers.ai_provider import AIProvider, ProviderResponse
from council.domain.providers.fanout import FanoutCallbacks
from council.domain.providers.provider_factory import ProviderFactory

logger = logging.getLogger(__name__)


class AsyncProviderFanout:
    """Fan-out collaborator backed by registered ``AIProvider`` classes.

    Args:
        provider_configs: Constructor kwargs per provider key
        factory: Provider registry (defaults to the global ``ProviderFactory``)
    """

    def __init__(
        self,
        provider_configs: dict[str, dict[str, Any]] | None = None,
        factory: type[ProviderFactory] = ProviderFactory,
    ) -> None:
        self._configs = provider_configs or {}
        self._factory = factory
        self._inflight: dict[str, set[asyncio.Task]] = defaultdict(set)

    def _create(self, provider_id: str) -> AIProvider:
        return self._factory.create(provider_id, self._configs.get(provider_id))

    def _timeout_for(self, provider: AIProvider, timeout: float | None) -> float | None:
        if timeout is not None:
            return timeout
        return provider.get_metadata().get("default_response_timeout")

    async def _generate(
        self,
        provider_id: str,
        prompt: str,
        *,
        context: dict[str, Any] | None,
        on_partial: Any,
        use_thinking: bool,
        timeout: float | None,
    ) -> ProviderResponse:
        provider = self._create(provider_id)
        limit = self._timeout_for(provider, timeout)
        try:
            return await asyncio.wait_for(
                provider.generate(
                    prompt, context=context, on_partial=on_partial, use_thinking=use_thinking
                ),
                timeout=limit,
            )
        except asyncio.TimeoutError as e:
            raise ProviderError(
                f"Request timeout after {limit}s", provider_id=provider_id, code="ETIMEDOUT"
            ) from e

    def _track(self, session_id: str, task: asyncio.Task) -> None:
        self._inflight[session_id].add(task)

        def _untrack(done: asyncio.Task) -> None:
            tasks = self._inflight.get(session_id)
            if tasks is not None:
                tasks.discard(done)
                if not tasks:
                    self._inflight.pop(session_id, None)

        task.add_done_callback(_untrack)

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
        """Call every provider concurrently and aggregate through ``on_all_complete``.

        Individual failures (including cancellation) are reported through
        ``on_error`` and collected; they never abort sibling calls.

        Returns:
            Whatever ``callbacks.on_all_complete`` returns
        """
        contexts = provider_contexts or {}
        results: dict[str, ProviderResponse] = {}
        errors: dict[str, BaseException] = {}

        async def run_one(provider_id: str) -> None:
            try:
                response = await self._generate(
                    provider_id,
                    prompt,
                    context=contexts.get(provider_id),
                    on_partial=lambda text: callbacks.on_partial(provider_id, text),
                    use_thinking=use_thinking,
                    timeout=timeout,
                )
            except asyncio.CancelledError:
                errors[provider_id] = ProviderError(
                    "Request cancelled", provider_id=provider_id, code="CANCELLED"
                )
                callbacks.on_error(provider_id, errors[provider_id])
                return
            except Exception as e:
                logger.warning(f"Provider {provider_id} failed: {e}")
                errors[provider_id] = e
                callbacks.on_error(provider_id, e)
                return
            results[provider_id] = response
            callbacks.on_provider_complete(provider_id, response)

        loop = asyncio.get_running_loop()
        tasks = [loop.create_task(run_one(pid)) for pid in provider_ids]
        for task in tasks:
            self._track(session_id, task)
        await asyncio.gather(*tasks, return_exceptions=True)

        return callbacks.on_all_complete(results, errors)

    async def execute_single(
        self,
        prompt: str,
        provider_id: str,
        *,
        session_id: str,
        provider_context: dict[str, Any] | None = None,
        timeout: float | None = None,
        on_partial: Any = None,
        use_thinking: bool = False,
    ) -> ProviderOutput:
        """Call one provider.

        Raises:
            ProviderError: If the provider fails, times out or is cancelled
            KeyError: If provider_id is not registered
        """
        task = asyncio.get_running_loop().create_task(
            self._generate(
                provider_id,
                prompt,
                context=provider_context,
                on_partial=on_partial,
                use_thinking=use_thinking,
                timeout=timeout,
            )
        )
        self._track(session_id, task)
        try:
            response = await task
        except asyncio.CancelledError as e:
            if not task.cancelled():
                raise
            raise ProviderError(
                "Request cancelled", provider_id=provider_id, code="CANCELLED"
            ) from e
        return ProviderOutput(provider_id=provider_id, text=response.text, meta=response.meta)

    def cancel(self, session_id: str) -> None:
        """Abort every in-flight call started for the session."""
        tasks = list(self._inflight.get(session_id, ()))
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info(f"Cancelled {len(tasks)} in-flight provider call(s) for {session_id}")
