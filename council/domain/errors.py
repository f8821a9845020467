"""Domain-level exceptions for the council workflow engine."""

from typing import Any


class ProviderError(Exception):
    """Raised when a provider fails (network, auth, timeout, etc.).

    The optional attributes mirror what transports usually expose and are
    read by the error classifier.
    """

    def __init__(
        self,
        message: str,
        *,
        provider_id: str | None = None,
        status: int | None = None,
        code: str | None = None,
        error_type: str | None = None,
        headers: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider_id = provider_id
        self.status = status
        self.code = code
        self.error_type = error_type
        self.headers = headers or {}


class InputTooLongError(ProviderError):
    """Raised when a prompt exceeds the input budget.

    Without ``provider_id`` it means no selected provider could take the
    prompt; with one it names the single provider whose limit was hit.
    """

    def __init__(
        self,
        prompt_length: int,
        *,
        provider_id: str | None = None,
        max_chars: int | None = None,
    ) -> None:
        if provider_id is None:
            message = (
                f"INPUT_TOO_LONG: Prompt length {prompt_length} exceeds limits "
                f"for all selected providers"
            )
        else:
            message = (
                f"INPUT_TOO_LONG: Prompt length {prompt_length} exceeds limit "
                f"{max_chars} for {provider_id}"
            )
        super().__init__(message, provider_id=provider_id, code="INPUT_TOO_LONG")
        self.prompt_length = prompt_length
        self.max_chars = max_chars


class MultiProviderAuthError(ProviderError):
    """Raised when every failed provider in a fan-out failed authentication."""

    def __init__(self, provider_ids: list[str]) -> None:
        super().__init__(
            f"Authentication expired for providers: {', '.join(provider_ids)}",
            code="MULTI_PROVIDER_AUTH",
        )
        self.provider_ids = list(provider_ids)


class AllProvidersFailedError(ProviderError):
    """Raised when no provider produced usable text."""

    def __init__(self, message: str = "All providers failed or returned empty responses") -> None:
        super().__init__(message)


class WorkflowCompileError(ValueError):
    """Raised when a request or resolved context fails validation."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class SourceResolutionError(ValueError):
    """Raised when a step cannot resolve enough input sources."""

    pass
