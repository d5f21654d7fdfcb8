"""Bounded retries with exponential backoff for streaming calls.

The delay before retry ``n`` (0-based) is ``base_delay_s * 2**n`` capped at
``max_delay_s``, plus ``random.uniform(0, 1)`` when jitter is on. A vendor
``retry_after`` hint raises the delay to at least that value. Retries stop at
``max_attempts`` or once the summed backoff would pass
``max_cumulative_wait_s``, whichever comes first.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from ..logging import get_logger
from .cancellation import CancellationToken
from .errors import RequestCancelledError, is_retryable, parse_rate_limit_error

logger = get_logger(__name__)

T = TypeVar("T")

RateLimitWaitCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry bounds for one request.

    Attributes:
        max_attempts: Attempts including the first. Must be >= 1.
        max_cumulative_wait_s: Ceiling on the total time spent in backoff.
        base_delay_s: Delay before the first retry.
        max_delay_s: Ceiling on a single backoff delay (a larger
            ``retry_after`` hint still wins).
        jitter: Add up to one second of random delay.
    """
    max_attempts: int = 3
    max_cumulative_wait_s: float = 60.0
    base_delay_s: float = 1.0
    max_delay_s: float = 20.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("RetryPolicy.max_attempts must be >= 1")
        if self.max_cumulative_wait_s < 0:
            raise ValueError("RetryPolicy.max_cumulative_wait_s must be >= 0")
        if self.base_delay_s < 0:
            raise ValueError("RetryPolicy.base_delay_s must be >= 0")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")

    def backoff_delay(self, attempt: int, retry_after_s: Optional[float] = None) -> float:
        delay = min(self.max_delay_s, self.base_delay_s * (2 ** attempt))
        if self.jitter:
            delay += random.uniform(0, 1)
        if retry_after_s is not None and retry_after_s > delay:
            delay = retry_after_s
        return delay


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    cancel_token: Optional[CancellationToken] = None,
    on_rate_limit_wait: Optional[RateLimitWaitCallback] = None,
    on_error: Optional[Callable[[BaseException], None]] = None,
    should_retry: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Run *operation* until it succeeds or the policy is exhausted.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Attempt and wait bounds.
        cancel_token: Interrupts the backoff sleep.
        on_rate_limit_wait: Called as ``(attempt, wait_ms, reason)`` before
            sleeping after a rate-limit error.
        on_error: Called with every failure before deciding to retry, e.g.
            to feed a rate limiter.
        should_retry: Predicate for retryable errors.

    Raises:
        RequestCancelledError: if cancelled before an attempt or during backoff.
        Exception: the last error once retries stop.
    """
    waited = 0.0
    for attempt in range(policy.max_attempts):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            return await operation()
        except RequestCancelledError:
            raise
        except Exception as exc:
            if on_error is not None:
                on_error(exc)
            if cancel_token is not None and cancel_token.cancelled:
                raise
            if not should_retry(exc):
                logger.error("Non-retryable error", error_type=type(exc).__name__, error=str(exc))
                raise
            if attempt >= policy.max_attempts - 1:
                logger.error("Retries exhausted", attempts=policy.max_attempts, error=str(exc))
                raise

            info = parse_rate_limit_error(exc)
            delay = policy.backoff_delay(attempt, info.retry_after_s)
            if waited + delay > policy.max_cumulative_wait_s:
                logger.error(
                    "Retry wait budget exhausted",
                    waited_s=round(waited, 2),
                    next_delay_s=round(delay, 2),
                    max_cumulative_wait_s=policy.max_cumulative_wait_s,
                )
                raise

            logger.warning(
                "Retryable error",
                attempt=attempt + 1,
                max_attempts=policy.max_attempts,
                error_type=type(exc).__name__,
                error=str(exc),
                delay_s=round(delay, 2),
            )
            if info.is_rate_limit and on_rate_limit_wait is not None:
                on_rate_limit_wait(attempt + 1, int(delay * 1000), info.reason or "Rate limit exceeded")

            waited += delay
            if cancel_token is not None:
                await cancel_token.sleep(delay)
            else:
                await asyncio.sleep(delay)

    raise RuntimeError("with_retries: exhausted retries")  # pragma: no cover
