"""Step and provider result models."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorType(str, Enum):
    """Provider error taxonomy."""

    RATE_LIMIT = "rate_limit"
    AUTH_EXPIRED = "auth_expired"
    TIMEOUT = "timeout"
    NETWORK = "network"
    CONTENT_FILTER = "content_filter"
    CIRCUIT_OPEN = "circuit_open"
    INPUT_TOO_LONG = "input_too_long"
    UNKNOWN = "unknown"


class ClassifiedError(BaseModel):
    """A provider failure mapped onto the error taxonomy."""

    model_config = ConfigDict(frozen=True)

    type: ErrorType
    message: str
    retryable: bool
    requires_reauth: bool = False
    retry_after_ms: int | None = None


class ProviderOutput(BaseModel):
    """One provider's output for a step.

    ``meta`` is the provider's opaque continuation blob; ``soft_error``
    is set when the text was recovered from the stream after a failure.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str
    text: str = ""
    status: str = "completed"
    meta: dict[str, Any] = Field(default_factory=dict)
    soft_error: dict[str, Any] | None = None

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())


class BatchResult(BaseModel):
    """Aggregated fan-out result for a batch step."""

    model_config = ConfigDict(frozen=True)

    results: dict[str, ProviderOutput] = Field(default_factory=dict)
    errors: dict[str, ClassifiedError] = Field(default_factory=dict)

    def completed_provider_ids(self) -> list[str]:
        """Providers whose status is completed with non-empty text."""
        return [
            pid
            for pid, output in self.results.items()
            if output.status == "completed" and output.has_text
        ]


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class StepResult:
    """Settled outcome of one step inside a run."""

    status: StepStatus
    result: BatchResult | ProviderOutput | None = None
    error: str | None = None

    @classmethod
    def completed(cls, result: BatchResult | ProviderOutput) -> "StepResult":
        return cls(status=StepStatus.COMPLETED, result=result)

    @classmethod
    def failed(cls, error: str) -> "StepResult":
        return cls(status=StepStatus.FAILED, error=error)

    @property
    def is_completed(self) -> bool:
        return self.status == StepStatus.COMPLETED


class ProviderStatusState(str, Enum):
    QUEUED = "queued"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ProviderStatus(BaseModel):
    """Ephemeral per-provider status emitted with progress events."""

    provider_id: str
    status: ProviderStatusState
    error: ClassifiedError | None = None
    skipped_reason: str | None = None
