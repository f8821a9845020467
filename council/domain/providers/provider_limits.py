"""Static per-provider input character budgets."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ProviderLimit:
    max_input_chars: int
    warn_threshold: int


PROVIDER_LIMITS: dict[str, ProviderLimit] = {
    "chatgpt": ProviderLimit(max_input_chars=32_000, warn_threshold=25_000),
    "claude": ProviderLimit(max_input_chars=100_000, warn_threshold=80_000),
    "gemini": ProviderLimit(max_input_chars=30_000, warn_threshold=25_000),
    "gemini-pro": ProviderLimit(max_input_chars=120_000, warn_threshold=100_000),
    "gemini-exp": ProviderLimit(max_input_chars=30_000, warn_threshold=25_000),
    "qwen": ProviderLimit(max_input_chars=30_000, warn_threshold=25_000),
}


class ProviderLimits:
    """Read-only lookup over the limit table, with optional overrides.

    Providers missing from the table are treated as unlimited.
    """

    def __init__(self, overrides: dict[str, ProviderLimit] | None = None) -> None:
        self._limits = {**PROVIDER_LIMITS, **(overrides or {})}

    def get(self, provider_id: str) -> ProviderLimit | None:
        return self._limits.get(provider_id)

    def get_max_input_chars(self, provider_id: str) -> int | None:
        limit = self._limits.get(provider_id)
        return limit.max_input_chars if limit else None

    def is_within_limit(self, provider_id: str, length: int) -> bool:
        max_chars = self.get_max_input_chars(provider_id)
        return max_chars is None or length <= max_chars

    def should_warn(self, provider_id: str, length: int) -> bool:
        limit = self._limits.get(provider_id)
        return limit is not None and length > limit.warn_threshold

    def items(self) -> list[tuple[str, ProviderLimit]]:
        return sorted(self._limits.items())
