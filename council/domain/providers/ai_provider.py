from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass
class ProviderResponse:
    """Text plus the provider's opaque continuation blob."""

    text: str
    meta: dict[str, Any] = field(default_factory=dict)


class AIProvider(ABC):
    """Abstract interface for remote text-generation providers (Strategy pattern)."""

    @classmethod
    def get_metadata(cls) -> dict[str, Any]:
        """Return provider metadata for discovery commands.

        Returns:
            dict with keys: name, description, requires_config, config_keys,
                           default_response_timeout, supports_streaming,
                           supports_thinking
        """
        return {
            "name": "unknown",
            "description": "No description available",
            "requires_config": False,
            "config_keys": [],
            "default_response_timeout": 300,  # 5 minutes
            "supports_streaming": False,
            "supports_thinking": False,
        }

    @abstractmethod
    def validate(self) -> None:
        """Verify provider is accessible and configured correctly.

        Raises:
            ProviderError: If provider is misconfigured or unreachable
        """
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        context: dict[str, Any] | None = None,
        on_partial: Callable[[str], None] | None = None,
        use_thinking: bool = False,
    ) -> ProviderResponse:
        """Generate a response for the prompt.

        Args:
            prompt: The prompt text to send
            context: Continuation blob from a previous turn (opaque)
            on_partial: Called with the full text accumulated so far
            use_thinking: Request extended reasoning where supported

        Returns:
            ProviderResponse with final text and continuation meta

        Raises:
            ProviderError: If the provider call fails (network, auth, timeout, etc.)
        """
        ...
