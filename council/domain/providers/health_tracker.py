"""Per-provider circuit breaker.

Each engine owns its own tracker. A provider's circuit opens after
``failure_threshold`` consecutive failures and stays open for the cooldown
(or the classified retry-after of a rate-limit failure, when longer).
Once the cooldown elapses a single half-open attempt is let through; its
outcome closes or re-opens the circuit.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from council.domain.models.results import ClassifiedError, ErrorType

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class HealthDecision:
    allowed: bool
    reason: str | None = None
    retry_after_ms: int | None = None


@dataclass
class ProviderHealth:
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    opened_at_ms: float | None = None
    cooldown_ms: int = 0
    last_error: ErrorType | None = None
    total_failures: int = 0
    total_successes: int = 0


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class HealthTracker:
    """Circuit-breaker state keyed by provider id."""

    failure_threshold: int = 3
    cooldown_ms: int = 60_000
    clock: Callable[[], float] = _monotonic_ms
    _health: dict[str, ProviderHealth] = field(default_factory=dict, init=False, repr=False)

    def _get(self, provider_id: str) -> ProviderHealth:
        return self._health.setdefault(provider_id, ProviderHealth())

    def should_attempt(self, provider_id: str) -> HealthDecision:
        """Decide whether a call to the provider may be made now."""
        health = self._get(provider_id)
        if health.state == CircuitState.CLOSED:
            return HealthDecision(allowed=True)

        if health.state == CircuitState.HALF_OPEN:
            # One trial request is already in flight
            return HealthDecision(
                allowed=False, reason="circuit_open", retry_after_ms=health.cooldown_ms
            )

        elapsed = self.clock() - (health.opened_at_ms or 0.0)
        if elapsed >= health.cooldown_ms:
            health.state = CircuitState.HALF_OPEN
            logger.info(f"Circuit half-open for {provider_id}")
            return HealthDecision(allowed=True)

        return HealthDecision(
            allowed=False,
            reason="circuit_open",
            retry_after_ms=int(health.cooldown_ms - elapsed),
        )

    def record_success(self, provider_id: str) -> None:
        health = self._get(provider_id)
        if health.state != CircuitState.CLOSED:
            logger.info(f"Circuit closed for {provider_id}")
        health.state = CircuitState.CLOSED
        health.consecutive_failures = 0
        health.opened_at_ms = None
        health.total_successes += 1

    def record_failure(self, provider_id: str, error: ClassifiedError | None = None) -> None:
        health = self._get(provider_id)
        health.consecutive_failures += 1
        health.total_failures += 1
        health.last_error = error.type if error else ErrorType.UNKNOWN

        cooldown = self.cooldown_ms
        if error is not None and error.type == ErrorType.RATE_LIMIT and error.retry_after_ms:
            cooldown = max(cooldown, error.retry_after_ms)

        reopen = health.state == CircuitState.HALF_OPEN
        if reopen or health.consecutive_failures >= self.failure_threshold:
            health.state = CircuitState.OPEN
            health.opened_at_ms = self.clock()
            health.cooldown_ms = cooldown
            logger.warning(
                f"Circuit opened for {provider_id} after "
                f"{health.consecutive_failures} consecutive failures"
            )

    def reset_circuit(self, provider_id: str) -> None:
        self._health.pop(provider_id, None)

    def state_of(self, provider_id: str) -> CircuitState:
        return self._get(provider_id).state
