"""Structured logging for llm_service.

Wraps structlog with a stdlib bridge so that library code can log with
key/value pairs while host applications keep their ordinary ``logging``
handlers.

Quick Start:
    >>> from llm_service.logging import configure_logging, LogConfig, LogLevel
    >>> configure_logging(LogConfig(level=LogLevel.DEBUG))

Per-request tracing:
    >>> from llm_service.logging import request_context
    >>> with request_context(request_id="req-1", provider="openai", model="gpt-4o"):
    ...     ...  # every log line carries request_id/provider/model
"""
import structlog

from .config import (
    LogConfig,
    LogFormat,
    LogLevel,
    configure_logging,
    ensure_configured,
    is_configured,
)
from .context import (
    bind_context,
    clear_context,
    get_context,
    request_context,
    unbind_context,
)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, configuring defaults on first use.

    Args:
        name: Logger name, normally ``__name__`` of the calling module.
    """
    ensure_configured()
    return structlog.get_logger(name)


__all__ = [
    "LogConfig",
    "LogFormat",
    "LogLevel",
    "configure_logging",
    "ensure_configured",
    "is_configured",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "get_context",
    "request_context",
]
