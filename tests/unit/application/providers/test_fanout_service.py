"""Tests for AsyncProviderFanout with registered fake providers."""

import asyncio
from typing import Any

import pytest

from council.application.providers.fanout_service import AsyncProviderFanout
from council.domain.errors import ProviderError
from council.domain.providers.ai_provider import ProviderResponse
from council.domain.providers.fanout import FanoutCallbacks


class Recorder:
    """Collects fan-out callbacks in call order."""

    def __init__(self) -> None:
        self.partials: list[tuple[str, str]] = []
        self.completed: list[str] = []
        self.failed: dict[str, BaseException] = {}

    def callbacks(self) -> FanoutCallbacks:
        return FanoutCallbacks(
            on_partial=lambda pid, text: self.partials.append((pid, text)),
            on_provider_complete=lambda pid, response: self.completed.append(pid),
            on_error=lambda pid, error: self.failed.__setitem__(pid, error),
            on_all_complete=lambda results, errors: (results, errors),
        )


def _parallel(
    fanout: AsyncProviderFanout, provider_ids: list[str], recorder: Recorder, **kwargs: Any
) -> tuple[dict[str, ProviderResponse], dict[str, BaseException]]:
    return asyncio.run(
        fanout.execute_parallel_fanout("prompt", provider_ids, recorder.callbacks(), session_id="s1", **kwargs)
    )


class TestParallelFanout:
    """Tests for execute_parallel_fanout()."""

    def test_collects_results_and_errors(self) -> None:
        fanout = AsyncProviderFanout(
            {
                "claude": {"text": "Postgres", "partials": ["Post"], "meta": {"conv": "c1"}},
                "gemini": {"error": ProviderError("boom", status=500)},
            }
        )
        recorder = Recorder()

        results, errors = _parallel(fanout, ["claude", "gemini"], recorder)

        assert results["claude"] == ProviderResponse(text="Postgres", meta={"conv": "c1"})
        assert isinstance(errors["gemini"], ProviderError)
        assert recorder.partials == [("claude", "Post")]
        assert recorder.completed == ["claude"]
        assert set(recorder.failed) == {"gemini"}

    def test_timeout_becomes_provider_error(self) -> None:
        fanout = AsyncProviderFanout({"claude": {"delay": 1.0}, "gemini": {"text": "fast"}})
        recorder = Recorder()

        results, errors = _parallel(fanout, ["claude", "gemini"], recorder, timeout=0.01)

        assert list(results) == ["gemini"]
        assert errors["claude"].code == "ETIMEDOUT"

    def test_provider_timeout_from_metadata(self) -> None:
        fanout = AsyncProviderFanout()

        class TimedProvider:
            @staticmethod
            def get_metadata() -> dict[str, Any]:
                return {"default_response_timeout": 0.01}

        assert fanout._timeout_for(TimedProvider(), None) == 0.01
        assert fanout._timeout_for(TimedProvider(), 5.0) == 5.0

    def test_unknown_provider_is_reported_as_error(self) -> None:
        recorder = Recorder()

        results, errors = _parallel(AsyncProviderFanout(), ["nope"], recorder)

        assert results == {}
        assert isinstance(errors["nope"], KeyError)

    def test_cancel_aborts_inflight_calls(self) -> None:
        fanout = AsyncProviderFanout({"claude": {"delay": 5.0}, "gemini": {"delay": 5.0}})
        recorder = Recorder()

        async def scenario() -> tuple[dict, dict]:
            call = asyncio.ensure_future(
                fanout.execute_parallel_fanout(
                    "prompt", ["claude", "gemini"], recorder.callbacks(), session_id="s1"
                )
            )
            await asyncio.sleep(0.01)
            fanout.cancel("s1")
            return await call

        results, errors = asyncio.run(scenario())

        assert results == {}
        assert {pid: e.code for pid, e in errors.items()} == {"claude": "CANCELLED", "gemini": "CANCELLED"}


class TestSingleCall:
    """Tests for execute_single()."""

    def test_returns_provider_output(self) -> None:
        fanout = AsyncProviderFanout({"claude": {"text": "Answer", "meta": {"conv": "c2"}}})
        partials: list[str] = []

        output = asyncio.run(
            fanout.execute_single("prompt", "claude", session_id="s1", on_partial=partials.append)
        )

        assert (output.provider_id, output.text, output.meta) == ("claude", "Answer", {"conv": "c2"})

    def test_streams_partials(self) -> None:
        fanout = AsyncProviderFanout({"claude": {"text": "abc", "partials": ["a", "ab"]}})
        partials: list[str] = []

        asyncio.run(fanout.execute_single("prompt", "claude", session_id="s1", on_partial=partials.append))

        assert partials == ["a", "ab"]

    def test_errors_propagate(self) -> None:
        fanout = AsyncProviderFanout({"claude": {"error": ProviderError("expired", status=401)}})

        with pytest.raises(ProviderError, match="expired"):
            asyncio.run(fanout.execute_single("prompt", "claude", session_id="s1"))

    def test_timeout(self) -> None:
        fanout = AsyncProviderFanout({"claude": {"delay": 1.0}})

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(fanout.execute_single("prompt", "claude", session_id="s1", timeout=0.01))

        assert exc_info.value.code == "ETIMEDOUT"

    def test_cancel(self) -> None:
        fanout = AsyncProviderFanout({"claude": {"delay": 5.0}})

        async def scenario() -> None:
            call = asyncio.ensure_future(fanout.execute_single("prompt", "claude", session_id="s1"))
            await asyncio.sleep(0.01)
            fanout.cancel("s1")
            await call

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(scenario())

        assert exc_info.value.code == "CANCELLED"

    def test_unknown_provider_raises_key_error(self) -> None:
        with pytest.raises(KeyError, match="not found"):
            asyncio.run(AsyncProviderFanout().execute_single("prompt", "nope", session_id="s1"))
