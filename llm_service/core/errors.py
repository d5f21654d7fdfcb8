"""Error taxonomy for the LLM service.

Every failure the Service can report maps onto one of these classes. The
Service itself converts them into ``ServiceResponse.error`` strings; the
classes exist so that collaborators (retry policy, rate limiter, adapters)
can make decisions without matching on message text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional


class LLMServiceError(Exception):
    """Base class for all llm_service errors."""


class UnknownProviderError(LLMServiceError):
    """No provider could be resolved from the request or the context."""

    def __init__(self, provider: Optional[str] = None):
        self.provider = provider
        if provider:
            super().__init__(f"Unknown provider: {provider}")
        else:
            super().__init__("Unknown provider: undefined (no provider on request or context)")


class UnsupportedProviderError(LLMServiceError):
    """The provider is known but no adapter is available for it."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unsupported provider: {provider}")


class MissingCredentialError(LLMServiceError):
    """The credential source has no API key for the resolved provider."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Missing API key for provider: {provider}")


class RateLimitedError(LLMServiceError):
    """The vendor rejected the request with a rate limit (HTTP 429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after_s: Optional[float] = None,
        limit: Optional[int] = None,
        used: Optional[int] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(message)
        self.retry_after_s = retry_after_s
        self.limit = limit
        self.used = used
        self.headers = headers or {}


class StreamError(LLMServiceError):
    """The vendor reported a failure while streaming."""

    def __init__(self, message: str, *, retryable: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class RequestCancelledError(LLMServiceError):
    """The caller cancelled the request."""

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)


class InvalidResponseSchemaError(LLMServiceError):
    """The structured-output schema supplied with a request is malformed."""


# ── Cancellation classification ─────────────────────────────────────────

CANCELLATION_PATTERN = re.compile(
    r"\b(cancel|canceled|cancelled|abort|aborted|terminate|terminated|stop|stopped)\b",
    re.IGNORECASE,
)


def is_cancellation_message(message: Optional[str]) -> bool:
    """Return True when *message* reads as a caller-initiated cancellation."""
    if not message:
        return False
    return CANCELLATION_PATTERN.search(message) is not None


# ── Rate limit parsing ──────────────────────────────────────────────────

DEFAULT_RATE_LIMIT_WAIT_MS = 5000

_TRY_AGAIN_RE = re.compile(r"try again in\s+([\d.]+)\s*(ms|s)\b", re.IGNORECASE)
_LIMIT_USED_RE = re.compile(r"limit\s+(\d+)\D+used\s+(\d+)", re.IGNORECASE)


@dataclass
class RateLimitInfo:
    """What could be learned about a rate-limit failure."""
    is_rate_limit: bool
    wait_ms: Optional[int] = None
    reason: Optional[str] = None
    limit: Optional[int] = None
    used: Optional[int] = None
    retry_after_s: Optional[float] = None


def _status_code(exc: BaseException) -> Optional[int]:
    code = getattr(exc, "status_code", None)
    if isinstance(code, int):
        return code
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    return code if isinstance(code, int) else None


def _header(exc: BaseException, name: str) -> Optional[str]:
    headers = getattr(exc, "headers", None)
    if not headers:
        response = getattr(exc, "response", None)
        headers = getattr(response, "headers", None)
    if not headers:
        return None
    try:
        value = headers.get(name)
    except AttributeError:
        return None
    return str(value) if value is not None else None


def parse_rate_limit_error(exc: BaseException) -> RateLimitInfo:
    """Extract rate-limit details from an exception.

    Recognises :class:`RateLimitedError`, SDK ``RateLimitError`` classes,
    anything carrying HTTP status 429, and message text such as
    "Please try again in 1.5s" or "Limit 30000, Used 29500".
    """
    message = str(exc)
    is_rate_limit = (
        isinstance(exc, RateLimitedError)
        or type(exc).__name__ == "RateLimitError"
        or _status_code(exc) == 429
        or "rate limit" in message.lower()
    )
    if not is_rate_limit:
        return RateLimitInfo(is_rate_limit=False)

    info = RateLimitInfo(is_rate_limit=True, reason=message or "Rate limit exceeded")

    if isinstance(exc, RateLimitedError):
        info.retry_after_s = exc.retry_after_s
        info.limit = exc.limit
        info.used = exc.used

    if info.retry_after_s is None:
        retry_after = _header(exc, "retry-after")
        if retry_after:
            try:
                info.retry_after_s = float(retry_after)
            except ValueError:
                pass

    match = _TRY_AGAIN_RE.search(message)
    if match:
        amount = float(match.group(1))
        info.wait_ms = int(amount if match.group(2).lower() == "ms" else amount * 1000)
    elif info.retry_after_s is not None:
        info.wait_ms = int(info.retry_after_s * 1000)

    match = _LIMIT_USED_RE.search(message)
    if match:
        info.limit = info.limit or int(match.group(1))
        info.used = info.used if info.used is not None else int(match.group(2))

    if info.retry_after_s is None and info.wait_ms is not None:
        info.retry_after_s = info.wait_ms / 1000.0

    return info


# ── SDK error classification ────────────────────────────────────────────

_RETRYABLE_NAMES = frozenset({
    "APIConnectionError",
    "APITimeoutError",
    "InternalServerError",
    "ServiceUnavailableError",
    "OverloadedError",
})


def classify_provider_error(exc: BaseException) -> BaseException:
    """Map a vendor SDK exception onto the service taxonomy.

    Already-classified errors and cancellations are returned unchanged.
    """
    if isinstance(exc, LLMServiceError):
        return exc

    info = parse_rate_limit_error(exc)
    if info.is_rate_limit:
        mapped: LLMServiceError = RateLimitedError(
            str(exc) or "Rate limit exceeded",
            retry_after_s=info.retry_after_s,
            limit=info.limit,
            used=info.used,
        )
        mapped.__cause__ = exc
        return mapped

    status = _status_code(exc)
    name = type(exc).__name__
    if name in _RETRYABLE_NAMES or isinstance(exc, (TimeoutError, ConnectionError)):
        retryable = True
    elif status is not None:
        retryable = status >= 500 or status in (408, 409)
    else:
        retryable = False

    mapped = StreamError(str(exc) or name, retryable=retryable, status_code=status)
    mapped.__cause__ = exc
    return mapped


def is_retryable(exc: BaseException) -> bool:
    """Default retry predicate: rate limits and transient stream errors."""
    if isinstance(exc, RequestCancelledError):
        return False
    classified = classify_provider_error(exc)
    if isinstance(classified, RateLimitedError):
        return True
    if isinstance(classified, StreamError):
        return classified.retryable
    return False


def error_message(exc: Any) -> str:
    """Return a non-empty, human-readable message for *exc*."""
    text = str(exc) if exc is not None else ""
    return text or type(exc).__name__
