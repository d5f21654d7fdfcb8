"""Request-scoped logging context.

Values bound here ride along on every log entry emitted from the same
async task, which is how a single ``LLMService.chat`` call is traced from
provider resolution through to the final usage breakdown.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator

_log_context: ContextVar[dict[str, Any]] = ContextVar("llm_service_log_context", default={})


def bind_context(**kwargs: Any) -> None:
    """Add key/value pairs to the current logging context."""
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def unbind_context(*keys: str) -> None:
    """Remove keys from the current logging context."""
    current = _log_context.get().copy()
    for key in keys:
        current.pop(key, None)
    _log_context.set(current)


def clear_context() -> None:
    """Drop every bound value."""
    _log_context.set({})


def get_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return _log_context.get().copy()


@contextmanager
def request_context(**kwargs: Any) -> Iterator[dict[str, Any]]:
    """Bind values for the duration of a block and restore the prior context.

    Example:
        >>> with request_context(request_id="abc", provider="anthropic"):
        ...     logger.info("streaming")
    """
    current = _log_context.get().copy()
    current.update({k: v for k, v in kwargs.items() if v is not None})
    token = _log_context.set(current)
    try:
        yield current
    finally:
        _log_context.reset(token)
