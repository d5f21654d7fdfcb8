"""Anthropic provider adapter.

Streams from the Messages API through the Anthropic Python SDK and runs the
tool-use loop locally: each step streams one assistant turn, executes any
``tool_use`` blocks it produced and sends the ``tool_result`` blocks back
until the model stops asking for tools.
"""

import json
from typing import Any, Callable, Optional

import anthropic

from ...core.protocols import StreamRequest
from ...core.sampling import supports_extended_thinking
from ...core.types import StepOutput
from ...core.usage import UsageStats
from ...core.vendors import WireShape
from ...logging import get_logger
from ...tools.base import AgentTool
from ...tools.schema_converters import to_anthropic_tool
from ..base import MAX_TOOL_STEPS, TaskStreamHandle, execute_tool_call, parse_tool_arguments, response_headers, start_stream

logger = get_logger(__name__)

# Room left for the visible answer when extended thinking is on
THINKING_ANSWER_TOKENS = 1024


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def convert_usage(usage: Any) -> UsageStats:
    """Anthropic usage to :class:`UsageStats`.

    Anthropic reports uncached input separately from cache reads and cache
    writes; all three are prompt tokens.
    """
    uncached = _get(usage, "input_tokens", 0) or 0
    cache_read = _get(usage, "cache_read_input_tokens", 0) or 0
    cache_write = _get(usage, "cache_creation_input_tokens", 0) or 0
    input_tokens = uncached + cache_read + cache_write
    output_tokens = _get(usage, "output_tokens", 0) or 0
    return UsageStats(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        cached_tokens=cache_read,
    )


class AnthropicAdapter:
    """Anthropic adapter implementing the ``ProviderAdapter`` protocol.

    Args:
        client_factory: Builds an ``AsyncAnthropic`` client from an API key;
            tests pass a factory returning a fake client.

    Example:
        >>> adapter = AnthropicAdapter()
        >>> handle = await adapter.stream(request)
        >>> await handle.wait()
    """

    def __init__(self, client_factory: Optional[Callable[[str], Any]] = None):
        self._client_factory = client_factory or (lambda api_key: anthropic.AsyncAnthropic(api_key=api_key))

    async def stream(self, request: StreamRequest) -> TaskStreamHandle:
        client = self._client_factory(request.api_key)
        return start_stream(self._run(client, request), request.callbacks)

    def build_params(self, request: StreamRequest, messages: list[dict[str, Any]]) -> dict[str, Any]:
        payload = request.payload
        sampling = request.sampling
        params: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_output_tokens,
            "messages": messages,
        }

        if payload.shape is WireShape.SYSTEM_MESSAGES:
            if payload.system_blocks:
                params["system"] = list(payload.system_blocks)
        elif payload.system_text:
            params["system"] = payload.system_text

        if request.tools:
            params["tools"] = [to_anthropic_tool(t) for t in request.tools]

        budget = sampling.thinking_budget
        if sampling.include_thoughts and budget and supports_extended_thinking(request.model):
            params["thinking"] = {"type": "enabled", "budget_tokens": budget}
            # Extended thinking only accepts the default temperature
            params["max_tokens"] = max(request.max_output_tokens, budget + THINKING_ANSWER_TOKENS)
        elif sampling.temperature is not None:
            params["temperature"] = sampling.temperature

        return params

    async def _run(self, client: Any, request: StreamRequest) -> None:
        callbacks = request.callbacks
        tools: dict[str, AgentTool] = {t.name: t for t in request.tools}
        messages: list[dict[str, Any]] = list(request.payload.messages)
        running = UsageStats(total_tokens=0)

        for step in range(1, MAX_TOOL_STEPS + 1):
            params = self.build_params(request, messages)
            logger.debug("Anthropic step", step=step, model=request.model, messages=len(messages))

            text_parts: list[str] = []
            reasoning_parts: list[str] = []
            async with client.messages.stream(**params) as stream:
                headers = response_headers(stream)
                if headers:
                    callbacks.on_headers(headers)
                async for event in stream:
                    if _get(event, "type") != "content_block_delta":
                        continue
                    delta = _get(event, "delta")
                    delta_type = _get(delta, "type")
                    if delta_type == "text_delta":
                        text = _get(delta, "text", "")
                        if text:
                            text_parts.append(text)
                            callbacks.on_chunk(text)
                    elif delta_type == "thinking_delta":
                        thinking = _get(delta, "thinking", "")
                        if thinking:
                            reasoning_parts.append(thinking)
                            callbacks.on_reasoning(thinking)
                final_message = await stream.get_final_message()

            tool_uses = [b for b in (_get(final_message, "content") or []) if _get(b, "type") == "tool_use"]
            tool_args = [_tool_input_text(b) for b in tool_uses]

            step_usage = convert_usage(_get(final_message, "usage") or {})
            running = UsageStats(
                input_tokens=running.input_tokens + step_usage.input_tokens,
                output_tokens=running.output_tokens + step_usage.output_tokens,
                total_tokens=running.total + step_usage.total,
                cached_tokens=running.cached_tokens + step_usage.cached_tokens,
                step_count=step,
            )
            callbacks.on_token_usage(
                running.copy(),
                StepOutput(text="".join(text_parts), reasoning="".join(reasoning_parts), tool_args=tool_args),
            )

            if not tool_uses or _get(final_message, "stop_reason") != "tool_use":
                return

            messages.append({"role": "assistant", "content": [_block_dict(b) for b in _get(final_message, "content")]})
            results = []
            for block in tool_uses:
                call_id = _get(block, "id")
                output, is_error = await execute_tool_call(
                    tools, _get(block, "name"), call_id, parse_tool_arguments(_get(block, "input")), callbacks
                )
                result: dict[str, Any] = {"type": "tool_result", "tool_use_id": call_id, "content": output}
                if is_error:
                    result["is_error"] = True
                results.append(result)
            messages.append({"role": "user", "content": results})

        logger.warning("Tool loop step limit reached", model=request.model, steps=MAX_TOOL_STEPS)


def _tool_input_text(block: Any) -> str:
    value = _get(block, "input")
    if isinstance(value, str):
        return value
    return json.dumps(value or {}, default=str)


def _block_dict(block: Any) -> dict[str, Any]:
    """SDK content block to the plain dict the Messages API accepts back."""
    if isinstance(block, dict):
        return block
    if hasattr(block, "model_dump"):
        return block.model_dump(exclude_none=True)
    return dict(vars(block))
