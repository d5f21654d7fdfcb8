"""Logging configuration for llm_service."""
import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import structlog

from .processors import add_logger_name, inject_context, redact_secrets


class LogLevel(str, Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_int(self) -> int:
        return getattr(logging, self.value)


class LogFormat(str, Enum):
    """Output format for logs."""
    PLAIN = "plain"
    JSON = "json"


@dataclass
class LogConfig:
    """Configuration for the logging framework.

    Attributes:
        level: Default level for the root logger.
        format: PLAIN for a console renderer, JSON for log shippers.
        log_file: Optional rotating log file.
        max_bytes: Rotation size for ``log_file``.
        backup_count: Rotated files to keep.
        module_levels: Per-logger level overrides, e.g. ``{"httpx": LogLevel.WARNING}``.
        filters: Callables receiving the event dict; returning None drops the event.
    """
    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.PLAIN
    log_file: Optional[Path] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5
    module_levels: dict[str, LogLevel] = field(default_factory=dict)
    filters: list[Callable[[dict], Optional[dict]]] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "LogConfig":
        """Build a config from ``LLM_SERVICE_LOG_*`` environment variables.

        Unknown level/format strings fall back to the defaults.
        """
        level_name = os.environ.get("LLM_SERVICE_LOG_LEVEL", "").upper()
        format_name = os.environ.get("LLM_SERVICE_LOG_FORMAT", "").lower()
        log_file = os.environ.get("LLM_SERVICE_LOG_FILE")
        return cls(
            level=LogLevel(level_name) if level_name in LogLevel.__members__ else LogLevel.INFO,
            format=LogFormat(format_name) if format_name in {f.value for f in LogFormat} else LogFormat.PLAIN,
            log_file=Path(log_file) if log_file else None,
            # SDK transport chatter is rarely useful next to request logs
            module_levels={"httpx": LogLevel.WARNING, "httpcore": LogLevel.WARNING},
        )


_configured: bool = False


def _get_processors(config: LogConfig) -> list:
    processors: list = [
        structlog.contextvars.merge_contextvars,
        inject_context,
        add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_secrets,
    ]

    for filter_func in config.filters:
        def make_filter(f: Callable):
            def processor(logger, method_name, event_dict):
                result = f(event_dict)
                if result is None:
                    raise structlog.DropEvent
                return result
            return processor
        processors.append(make_filter(filter_func))

    return processors


def _get_renderer(config: LogConfig):
    if config.format == LogFormat.JSON:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def _setup_stdlib_logging(config: LogConfig) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(config.level.to_int())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(config.level.to_int())
    root_logger.addHandler(console_handler)

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.log_file,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
        )
        file_handler.setLevel(config.level.to_int())
        root_logger.addHandler(file_handler)

    for module_name, level in config.module_levels.items():
        logging.getLogger(module_name).setLevel(level.to_int())


def configure_logging(config: Optional[LogConfig] = None) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        config: Logging configuration. Defaults to ``LogConfig.from_env()``.

    Example:
        >>> configure_logging(LogConfig(level=LogLevel.DEBUG, format=LogFormat.JSON))
    """
    global _configured

    if config is None:
        config = LogConfig.from_env()

    _setup_stdlib_logging(config)
    processors = _get_processors(config)

    structlog.configure(
        processors=processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _get_renderer(config),
        ],
    )
    for handler in logging.getLogger().handlers:
        handler.setFormatter(formatter)

    _configured = True


def is_configured() -> bool:
    return _configured


def ensure_configured() -> None:
    """Configure with environment defaults if nobody has configured logging yet."""
    if not _configured:
        configure_logging()
