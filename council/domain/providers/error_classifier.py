"""Map raw provider failures onto the error taxonomy.

Rate-limit errors resolve a retry-after duration from, in order, the
``retry-after`` header (seconds) and reset timestamps embedded in a JSON
error message. Reset timestamps below ``_EPOCH_MS_CUTOFF`` are epoch
seconds, anything larger is already epoch milliseconds.
"""

import json
import re
import time
from typing import Any, Callable

from council.domain.constants import DEFAULT_RETRY_AFTER_MS
from council.domain.models.results import ClassifiedError, ErrorType

_RATE_LIMIT_PATTERN = re.compile(r"rate[_\s-]?limit", re.IGNORECASE)
_TIMEOUT_CODES = {"ETIMEDOUT", "ESOCKETTIMEDOUT"}
_NETWORK_CODES = {"ECONNREFUSED", "ENOTFOUND", "ENETUNREACH"}
_CONTENT_FILTER_MARKERS = ("content filter", "safety", "blocked")
_EPOCH_MS_CUTOFF = 1e12

ERROR_DISPLAY_TEXT: dict[ErrorType, dict[str, str]] = {
    ErrorType.RATE_LIMIT: {
        "title": "Rate Limited",
        "description": "This provider is temporarily unavailable. It will automatically retry.",
    },
    ErrorType.AUTH_EXPIRED: {
        "title": "Login Required",
        "description": "Please log in to this provider again.",
    },
    ErrorType.TIMEOUT: {
        "title": "Timed Out",
        "description": "The request took too long. Click retry to try again.",
    },
    ErrorType.CIRCUIT_OPEN: {
        "title": "Temporarily Unavailable",
        "description": "Too many recent failures. Will automatically recover.",
    },
    ErrorType.CONTENT_FILTER: {
        "title": "Content Blocked",
        "description": "This provider blocked the response. Try rephrasing your request.",
    },
    ErrorType.INPUT_TOO_LONG: {
        "title": "Input Too Long",
        "description": "Your message exceeds this provider's input limit. Shorten it and retry.",
    },
    ErrorType.NETWORK: {
        "title": "Connection Failed",
        "description": "Could not reach the provider. Check your connection.",
    },
    ErrorType.UNKNOWN: {
        "title": "Error",
        "description": "Something went wrong.",
    },
}


def _now_ms() -> float:
    return time.time() * 1000


def _status_of(error: BaseException) -> int | None:
    status = getattr(error, "status", None) or getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def _parse_retry_after_header(error: BaseException) -> int | None:
    headers: dict[str, Any] = getattr(error, "headers", None) or {}
    lowered = {str(k).lower(): v for k, v in headers.items()}
    raw = lowered.get("retry-after")
    if raw is None:
        return None
    try:
        seconds = int(float(str(raw).strip()))
    except ValueError:
        return None
    return seconds * 1000 if seconds > 0 else None


def _reset_to_ms(value: Any, now_ms: float) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    reset_ms = value if value >= _EPOCH_MS_CUTOFF else value * 1000
    remaining = int(reset_ms - now_ms)
    return remaining if remaining > 0 else None


def _parse_reset_from_message(message: str, now_ms: float) -> int | None:
    trimmed = message.strip()
    if not trimmed.startswith("{"):
        return None
    try:
        parsed = json.loads(trimmed)
    except ValueError:
        return None
    if not isinstance(parsed, dict):
        return None

    direct = _reset_to_ms(parsed.get("resetsAt", parsed.get("resets_at")), now_ms)
    if direct is not None:
        return direct

    windows = parsed.get("windows")
    if not isinstance(windows, dict):
        return None
    window = windows.get("5h") or windows.get("1h")
    if isinstance(window, dict):
        return _reset_to_ms(window.get("resets_at", window.get("resetsAt")), now_ms)
    return None


def resolve_retry_after_ms(
    error: BaseException, now_ms: Callable[[], float] = _now_ms
) -> int:
    """Resolve how long to wait before retrying a rate-limited provider."""
    from_header = _parse_retry_after_header(error)
    if from_header is not None:
        return from_header
    from_message = _parse_reset_from_message(str(error), now_ms())
    if from_message is not None:
        return from_message
    return DEFAULT_RETRY_AFTER_MS


def _rate_limited(error: BaseException, now_ms: Callable[[], float]) -> ClassifiedError:
    return ClassifiedError(
        type=ErrorType.RATE_LIMIT,
        message="Rate limit reached. Please wait before retrying.",
        retryable=True,
        retry_after_ms=resolve_retry_after_ms(error, now_ms),
    )


def classify_error(
    error: BaseException, now_ms: Callable[[], float] = _now_ms
) -> ClassifiedError:
    """Classify an exception for retry logic and user-facing messaging.

    Args:
        error: The raised exception. ``ProviderError`` attributes (status,
            code, error_type, headers) are used when present.
        now_ms: Clock used to turn reset timestamps into durations.

    Returns:
        ClassifiedError describing type, retryability and retry delay.
    """
    code = getattr(error, "code", None)
    message = str(error)
    lowered = message.lower()

    if code == "RATE_LIMITED":
        return _rate_limited(error, now_ms)

    if code == "INPUT_TOO_LONG":
        return ClassifiedError(
            type=ErrorType.INPUT_TOO_LONG,
            message=message or "Prompt exceeds the provider input limit.",
            retryable=False,
        )

    status = _status_of(error)
    if status is not None:
        if status == 429:
            return _rate_limited(error, now_ms)
        if status in (401, 403):
            return ClassifiedError(
                type=ErrorType.AUTH_EXPIRED,
                message="Authentication expired. Please log in again.",
                retryable=False,
                requires_reauth=True,
            )
        if status >= 500:
            return ClassifiedError(
                type=ErrorType.UNKNOWN,
                message="Provider server error. Will retry automatically.",
                retryable=True,
            )

    if getattr(error, "error_type", None) == "rate_limit_error" or _RATE_LIMIT_PATTERN.search(message):
        return _rate_limited(error, now_ms)

    if isinstance(error, TimeoutError) or code in _TIMEOUT_CODES or "timeout" in lowered:
        return ClassifiedError(
            type=ErrorType.TIMEOUT,
            message="Request timed out. Retrying may help.",
            retryable=True,
        )

    if isinstance(error, ConnectionError) or code in _NETWORK_CODES or "network" in lowered:
        return ClassifiedError(
            type=ErrorType.NETWORK,
            message="Network connection failed.",
            retryable=True,
        )

    if any(marker in lowered for marker in _CONTENT_FILTER_MARKERS):
        return ClassifiedError(
            type=ErrorType.CONTENT_FILTER,
            message="Response blocked by provider safety filters.",
            retryable=False,
        )

    return ClassifiedError(
        type=ErrorType.UNKNOWN,
        message=message or "An unexpected error occurred.",
        retryable=True,
    )


def circuit_open_error(retry_after_ms: int | None) -> ClassifiedError:
    """Error recorded locally when the health tracker denies an attempt."""
    return ClassifiedError(
        type=ErrorType.CIRCUIT_OPEN,
        message="Provider temporarily unavailable after repeated failures.",
        retryable=False,
        retry_after_ms=retry_after_ms,
    )


def input_too_long_error(prompt_length: int, max_chars: int) -> ClassifiedError:
    """Error recorded locally when a prompt exceeds a provider's budget."""
    return ClassifiedError(
        type=ErrorType.INPUT_TOO_LONG,
        message=f"Prompt length {prompt_length} exceeds limit of {max_chars} characters.",
        retryable=False,
    )
