"""Events emitted by the Service and the sinks that receive them."""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Literal, Optional, Protocol, Union, runtime_checkable

from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChunkEvent:
    provider: str
    model: str
    text: str
    type: Literal["chunk"] = "chunk"


@dataclass(frozen=True)
class ReasoningEvent:
    provider: str
    model: str
    text: str
    type: Literal["reasoning"] = "reasoning"


@dataclass(frozen=True)
class ToolStartEvent:
    provider: str
    model: str
    name: str
    call_id: Optional[str] = None
    arguments: Any = None
    type: Literal["tool_start"] = "tool_start"


@dataclass(frozen=True)
class ToolEndEvent:
    provider: str
    model: str
    name: str
    call_id: Optional[str] = None
    result: Any = None
    type: Literal["tool_end"] = "tool_end"


@dataclass(frozen=True)
class ToolErrorEvent:
    provider: str
    model: str
    name: str
    error: str
    call_id: Optional[str] = None
    type: Literal["tool_error"] = "tool_error"


@dataclass(frozen=True)
class RateLimitWaitEvent:
    provider: str
    model: str
    attempt: int
    wait_ms: int
    reason: str
    type: Literal["rate_limit_wait"] = "rate_limit_wait"


@dataclass(frozen=True)
class TokenUsageEvent:
    """One usage delta. ``cost`` is a ``CostBreakdown`` dict when pricing is known."""
    provider: str
    model: str
    usage: dict[str, int]
    cost: Optional[dict[str, Any]] = None
    type: Literal["token_usage"] = "token_usage"


@dataclass(frozen=True)
class UsageBreakdownEvent:
    provider: str
    model: str
    breakdown: dict[str, Any] = field(default_factory=dict)
    type: Literal["usage_breakdown"] = "usage_breakdown"


@dataclass(frozen=True)
class ErrorEvent:
    provider: str
    model: str
    error: str
    type: Literal["error"] = "error"


ServiceEvent = Union[
    ChunkEvent,
    ReasoningEvent,
    ToolStartEvent,
    ToolEndEvent,
    ToolErrorEvent,
    RateLimitWaitEvent,
    TokenUsageEvent,
    UsageBreakdownEvent,
    ErrorEvent,
]


def event_to_dict(event: ServiceEvent) -> dict[str, Any]:
    return asdict(event)


@runtime_checkable
class EventSink(Protocol):
    """Receiver of Service events (e.g. a UI bus)."""

    def emit(self, event: ServiceEvent) -> None:
        ...


class CallbackEventSink:
    """Forwards every event to a plain callable.

    A failing callback is logged and does not interrupt the request.
    """

    def __init__(self, callback: Callable[[ServiceEvent], None]):
        self._callback = callback

    def emit(self, event: ServiceEvent) -> None:
        try:
            self._callback(event)
        except Exception:
            logger.warning("Event callback failed", event_type=event.type, exc_info=True)


class QueueEventSink:
    """Puts events on an ``asyncio.Queue`` for a consumer task."""

    def __init__(self, queue: Optional[asyncio.Queue] = None):
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()

    def emit(self, event: ServiceEvent) -> None:
        self.queue.put_nowait(event)


class NullEventSink:
    def emit(self, event: ServiceEvent) -> None:
        pass
