"""Contracts between the Service and its collaborators.

Using Protocol enables structural subtyping, so test doubles and
alternative implementations satisfy these without inheriting anything.
None of these import a vendor SDK.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Protocol, runtime_checkable

from .errors import RateLimitInfo
from .formatting import WirePayload
from .types import SamplingParams, StepOutput
from .usage import UsageStats
from .vendors import Vendor


def _noop(*args: Any, **kwargs: Any) -> None:
    return None


@dataclass
class StreamCallbacks:
    """Callbacks an adapter invokes while streaming.

    Attributes:
        on_chunk: Text fragment as received from the vendor.
        on_reasoning: Reasoning/thinking fragment.
        on_tool_start: ``(name, call_id, arguments)`` before a tool runs.
        on_tool_end: ``(name, call_id, result)`` after a tool returns.
        on_tool_error: ``(name, call_id, error_message)`` when a tool raises.
        on_token_usage: ``(usage, step_output)`` per usage report; usage may
            be cumulative or per-step.
        on_headers: Response headers, for rate-limit learning.
        on_done: The stream finished normally.
        on_error: The stream failed (the error is also raised from ``wait``).
    """
    on_chunk: Callable[[str], None] = _noop
    on_reasoning: Callable[[str], None] = _noop
    on_tool_start: Callable[[str, Optional[str], Any], None] = _noop
    on_tool_end: Callable[[str, Optional[str], Any], None] = _noop
    on_tool_error: Callable[[str, Optional[str], str], None] = _noop
    on_token_usage: Callable[[UsageStats, Optional[StepOutput]], None] = _noop
    on_headers: Callable[[Mapping[str, str]], None] = _noop
    on_done: Callable[[], None] = _noop
    on_error: Callable[[BaseException], None] = _noop


@dataclass
class StreamRequest:
    """Everything an adapter needs for one streaming call."""
    vendor: Vendor
    api_key: str
    model: str
    payload: WirePayload
    sampling: SamplingParams = field(default_factory=SamplingParams)
    tools: list[Any] = field(default_factory=list)
    response_schema: Optional[dict[str, Any]] = None
    max_output_tokens: int = 8192
    callbacks: StreamCallbacks = field(default_factory=StreamCallbacks)


@runtime_checkable
class StreamHandle(Protocol):
    """A running stream."""

    def cancel(self) -> None:
        """Stop the stream. Safe to call more than once."""
        ...

    async def wait(self) -> None:
        """Wait for the stream to finish; re-raises its error."""
        ...


@runtime_checkable
class ProviderAdapter(Protocol):
    """One vendor's streaming entry point."""

    async def stream(self, request: StreamRequest) -> StreamHandle:
        ...


@runtime_checkable
class RateLimiter(Protocol):
    async def check_and_wait(self, provider: str, model: str) -> int:
        """Milliseconds to wait before the next request."""
        ...

    def record_request(self, provider: str, model: str) -> None:
        ...

    def update_from_error(
        self,
        provider: str,
        model: str,
        error: BaseException,
        info: Optional[RateLimitInfo] = None,
    ) -> None:
        ...


@runtime_checkable
class CredentialSource(Protocol):
    def get_key(self, provider: str) -> Optional[str]:
        """API key for *provider*, or None."""
        ...
