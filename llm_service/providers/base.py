"""Pieces shared by the SDK-backed provider adapters."""

import asyncio
import json
from typing import Any, Awaitable, Optional

from ..core.errors import RequestCancelledError, classify_provider_error, error_message
from ..core.protocols import StreamCallbacks
from ..logging import get_logger
from ..tools.base import AgentTool, stringify_result

logger = get_logger(__name__)

# Upper bound on model/tool round trips within one turn
MAX_TOOL_STEPS = 50


class TaskStreamHandle:
    """:class:`~llm_service.core.protocols.StreamHandle` backed by an asyncio task.

    ``cancel()`` cancels the task once; later calls are no-ops. ``wait()``
    re-raises the task's error and reports a cancelled task as
    :class:`RequestCancelledError`.
    """

    def __init__(self, task: "asyncio.Task[None]"):
        self._task = task
        self._cancel_requested = False

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        if self._cancel_requested:
            return
        self._cancel_requested = True
        if not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            raise RequestCancelledError() from None


def start_stream(coro: Awaitable[None], callbacks: StreamCallbacks) -> TaskStreamHandle:
    """Run *coro* as a task that reports ``on_done``/``on_error``."""

    async def runner() -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            mapped = classify_provider_error(e)
            logger.debug("Provider stream failed", error_type=type(e).__name__, error=str(e))
            callbacks.on_error(mapped)
            if mapped is e:
                raise
            raise mapped from e
        callbacks.on_done()

    return TaskStreamHandle(asyncio.ensure_future(runner()))


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode streamed tool-call arguments; malformed JSON yields ``{}``."""
    if isinstance(raw, dict):
        return raw
    if not raw or not str(raw).strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Malformed tool arguments", raw=str(raw)[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {"value": parsed}


async def execute_tool_call(
    tools: dict[str, AgentTool],
    name: str,
    call_id: Optional[str],
    arguments: dict[str, Any],
    callbacks: StreamCallbacks,
) -> tuple[str, bool]:
    """Run one tool call and return ``(result_text, is_error)``.

    Tool failures become error results for the model rather than stream
    errors; cancellation propagates.
    """
    tool = tools.get(name)
    if tool is None:
        message = f"Error: Tool {name} not found"
        callbacks.on_tool_error(name, call_id, message)
        return message, True

    callbacks.on_tool_start(name, call_id, arguments)
    try:
        result = await tool.invoke(arguments)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        message = error_message(e)
        logger.warning("Tool failed", tool=name, call_id=call_id, error=message)
        callbacks.on_tool_error(name, call_id, message)
        return f"Error: {message}", True

    callbacks.on_tool_end(name, call_id, result)
    return stringify_result(result), False


def response_headers(stream: Any) -> dict[str, str]:
    """Headers of the HTTP response behind an SDK stream object, if exposed."""
    response = getattr(stream, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return {}
    try:
        return {str(k).lower(): str(v) for k, v in headers.items()}
    except AttributeError:
        return {}
