"""structlog processors used by the llm_service logging pipeline."""
from typing import Any

from .context import get_context

SECRET_KEYS = frozenset({"api_key", "apikey", "credential", "authorization", "x-api-key"})
REDACTED = "***"


def inject_context(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Copy request-scoped context into the event without overriding explicit keys."""
    for key, value in get_context().items():
        event_dict.setdefault(key, value)
    return event_dict


def add_logger_name(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add a ``logger`` field naming the emitting logger."""
    record = event_dict.get("_record")
    if record is not None:
        event_dict["logger"] = record.name
    elif hasattr(logger, "name"):
        event_dict["logger"] = logger.name
    return event_dict


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: (REDACTED if str(k).lower() in SECRET_KEYS and v else _redact(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_redact(v) for v in value]
    return value


def redact_secrets(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Mask credential-looking fields, including ones nested in dict payloads."""
    return _redact(event_dict)
