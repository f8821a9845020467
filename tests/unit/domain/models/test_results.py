"""Tests for step and provider result models."""

from council.domain.models.results import (
    BatchResult,
    ProviderOutput,
    StepResult,
    StepStatus,
)


class TestBatchResult:
    """Tests for BatchResult.completed_provider_ids()."""

    def test_counts_only_completed_non_empty(self) -> None:
        batch = BatchResult(
            results={
                "claude": ProviderOutput(provider_id="claude", text="answer"),
                "gemini": ProviderOutput(provider_id="gemini", text="   "),
                "chatgpt": ProviderOutput(provider_id="chatgpt", status="failed"),
                "qwen": ProviderOutput(provider_id="qwen", text="x", status="skipped"),
            }
        )
        assert batch.completed_provider_ids() == ["claude"]

    def test_empty_batch(self) -> None:
        assert BatchResult().completed_provider_ids() == []


class TestStepResult:
    """Tests for StepResult constructors."""

    def test_completed(self) -> None:
        output = ProviderOutput(provider_id="claude", text="ok")
        result = StepResult.completed(output)
        assert result.status == StepStatus.COMPLETED
        assert result.is_completed
        assert result.result is output
        assert result.error is None

    def test_failed(self) -> None:
        result = StepResult.failed("boom")
        assert not result.is_completed
        assert result.error == "boom"
        assert result.result is None


class TestProviderOutput:
    def test_has_text(self) -> None:
        assert ProviderOutput(provider_id="a", text="x").has_text
        assert not ProviderOutput(provider_id="a", text="\n ").has_text
