"""Proactive rate-limit tracking.

Limits are learned from response headers and 429 errors, then enforced
before the next request so the Service waits instead of collecting another
429. State is kept per (provider, model).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from ..logging import get_logger
from .errors import DEFAULT_RATE_LIMIT_WAIT_MS, RateLimitInfo, parse_rate_limit_error

logger = get_logger(__name__)

# Wait for the token window to reset once less than this share is left
TOKEN_THRESHOLD_RATIO = 0.1
DEFAULT_ESTIMATED_TOKENS = 1000


@dataclass
class LastRateLimitError:
    timestamp: float
    wait_ms: int
    reason: str


@dataclass
class RateLimitState:
    """What is known about one provider/model's limits. Times are epoch seconds."""
    requests_limit: Optional[int] = None
    requests_remaining: Optional[int] = None
    requests_reset_at: Optional[float] = None
    tokens_limit: Optional[int] = None
    tokens_remaining: Optional[int] = None
    tokens_reset_at: Optional[float] = None
    last_error: Optional[LastRateLimitError] = None


def _provider_id(provider: Any) -> str:
    return getattr(provider, "value", provider)


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None


def _parse_seconds(value: Any) -> Optional[float]:
    """Parse an OpenAI reset value such as ``"8.64s"``, ``"120ms"`` or ``"1m30s"``."""
    text = str(value).strip().lower()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        pass
    total = 0.0
    number = ""
    i = 0
    matched = False
    while i < len(text):
        ch = text[i]
        if ch.isdigit() or ch == ".":
            number += ch
            i += 1
            continue
        if not number:
            return None
        if text.startswith("ms", i):
            total += float(number) / 1000
            i += 2
        elif ch == "h":
            total += float(number) * 3600
            i += 1
        elif ch == "m":
            total += float(number) * 60
            i += 1
        elif ch == "s":
            total += float(number)
            i += 1
        else:
            return None
        number = ""
        matched = True
    if number:
        return None
    return total if matched else None


def _parse_iso(value: Any) -> Optional[float]:
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).timestamp()
    except ValueError:
        return None


class RateLimitTracker:
    """Learns and enforces provider rate limits.

    Args:
        clock: Returns the current time in epoch seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._state: dict[tuple[str, str], RateLimitState] = {}

    def _limits(self, provider: str, model: str) -> RateLimitState:
        key = (_provider_id(provider), model)
        if key not in self._state:
            self._state[key] = RateLimitState()
        return self._state[key]

    async def check_and_wait(self, provider: str, model: str) -> int:
        """Return how long to wait (ms) before the next request; 0 if none."""
        limits = self._state.get((_provider_id(provider), model))
        if limits is None:
            return 0

        now = self._clock()
        wait_ms = 0.0

        if limits.last_error is not None:
            elapsed_ms = (now - limits.last_error.timestamp) * 1000
            if elapsed_ms < limits.last_error.wait_ms:
                wait_ms = max(wait_ms, limits.last_error.wait_ms - elapsed_ms)

        if limits.requests_remaining is not None and limits.requests_remaining <= 0:
            if limits.requests_reset_at is not None and limits.requests_reset_at > now:
                wait_ms = max(wait_ms, (limits.requests_reset_at - now) * 1000)

        if limits.tokens_limit and limits.tokens_remaining is not None:
            if limits.tokens_remaining < limits.tokens_limit * TOKEN_THRESHOLD_RATIO:
                if limits.tokens_reset_at is not None and limits.tokens_reset_at > now:
                    wait_ms = max(wait_ms, (limits.tokens_reset_at - now) * 1000)

        return int(wait_ms)

    def update_from_headers(self, provider: str, model: str, headers: Mapping[str, Any]) -> None:
        """Learn limits from OpenAI ``x-ratelimit-*`` or Anthropic ``anthropic-ratelimit-*`` headers."""
        if not headers:
            return
        lowered = {str(k).lower(): v for k, v in headers.items()}
        limits = self._limits(provider, model)
        now = self._clock()

        if _provider_id(provider) == "anthropic":
            prefix = "anthropic-ratelimit-"
            for kind in ("requests", "tokens"):
                limit = lowered.get(f"{prefix}{kind}-limit")
                remaining = lowered.get(f"{prefix}{kind}-remaining")
                reset = lowered.get(f"{prefix}{kind}-reset")
                if limit is not None:
                    setattr(limits, f"{kind}_limit", _parse_int(limit))
                if remaining is not None:
                    setattr(limits, f"{kind}_remaining", _parse_int(remaining))
                if reset is not None:
                    setattr(limits, f"{kind}_reset_at", _parse_iso(reset))
        else:
            for kind in ("requests", "tokens"):
                limit = lowered.get(f"x-ratelimit-limit-{kind}")
                remaining = lowered.get(f"x-ratelimit-remaining-{kind}")
                reset = lowered.get(f"x-ratelimit-reset-{kind}")
                if limit is not None:
                    setattr(limits, f"{kind}_limit", _parse_int(limit))
                if remaining is not None:
                    setattr(limits, f"{kind}_remaining", _parse_int(remaining))
                if reset is not None:
                    seconds = _parse_seconds(reset)
                    if seconds is not None:
                        setattr(limits, f"{kind}_reset_at", now + seconds)

        logger.debug("Updated rate limits from headers", provider=_provider_id(provider), model=model, limits=vars(limits))

    def update_from_error(
        self,
        provider: str,
        model: str,
        error: BaseException,
        info: Optional[RateLimitInfo] = None,
    ) -> None:
        """Remember a 429 so the next request waits it out."""
        if info is None:
            info = parse_rate_limit_error(error)
        limits = self._limits(provider, model)
        now = self._clock()

        limits.last_error = LastRateLimitError(
            timestamp=now,
            wait_ms=info.wait_ms or DEFAULT_RATE_LIMIT_WAIT_MS,
            reason=info.reason or "Rate limit exceeded",
        )
        if info.limit:
            limits.tokens_limit = info.limit
        if info.used is not None:
            limits.tokens_remaining = max(0, (info.limit or 0) - info.used)
        if info.retry_after_s is not None:
            limits.requests_reset_at = now + info.retry_after_s

        logger.info(
            "Learned rate limit from error",
            provider=_provider_id(provider),
            model=model,
            wait_ms=limits.last_error.wait_ms,
            reason=limits.last_error.reason,
        )

    def record_request(self, provider: str, model: str, estimated_tokens: int = DEFAULT_ESTIMATED_TOKENS) -> None:
        """Optimistically count one request against the known limits."""
        limits = self._state.get((_provider_id(provider), model))
        if limits is None:
            return
        if limits.requests_remaining is not None and limits.requests_remaining > 0:
            limits.requests_remaining -= 1
        if limits.tokens_remaining is not None and limits.tokens_remaining > estimated_tokens:
            limits.tokens_remaining -= estimated_tokens

    def get_limits(self, provider: str, model: str) -> Optional[RateLimitState]:
        return self._state.get((_provider_id(provider), model))

    def clear_limits(self, provider: str, model: Optional[str] = None) -> None:
        if model is not None:
            self._state.pop((_provider_id(provider), model), None)
            return
        for key in [k for k in self._state if k[0] == _provider_id(provider)]:
            del self._state[key]
