"""OpenAI and OpenAI-compatible provider adapters.

Both stream Chat Completions through the OpenAI Python SDK. The compatible
adapter points the same client at another vendor's endpoint (Gemini,
Fireworks, xAI, OpenRouter).

The streaming delta pattern handled here:

- ``chunk.choices[0].delta.content`` for text
- ``chunk.choices[0].delta.reasoning_content`` / ``.reasoning`` for reasoning
- ``chunk.choices[0].delta.tool_calls`` for tool-call fragments
- ``chunk.usage`` on the final chunk (``stream_options.include_usage``)
"""

import re
from typing import Any, Callable, Optional

import openai

from ...core.formatting import normalize_response_schema
from ...core.protocols import StreamRequest
from ...core.sampling import supports_reasoning_effort
from ...core.types import StepOutput
from ...core.usage import UsageStats
from ...core.vendors import Vendor, WireShape
from ...logging import get_logger
from ...tools.base import AgentTool
from ...tools.schema_converters import to_openai_tool
from ..base import MAX_TOOL_STEPS, TaskStreamHandle, execute_tool_call, parse_tool_arguments, response_headers, start_stream

logger = get_logger(__name__)

BASE_URLS: dict[Vendor, str] = {
    Vendor.GEMINI: "https://generativelanguage.googleapis.com/v1beta/openai/",
    Vendor.FIREWORKS: "https://api.fireworks.ai/inference/v1",
    Vendor.XAI: "https://api.x.ai/v1",
    Vendor.OPENROUTER: "https://openrouter.ai/api/v1",
}

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")
_RESPONSE_FORMAT_REJECTED = re.compile(r"response_format|json_schema|unsupported", re.IGNORECASE)
_TEMPERATURE_REJECTED = re.compile(r"temperature", re.IGNORECASE)


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def convert_usage(usage_obj: Any) -> UsageStats:
    """Normalize OpenAI usage fields to :class:`UsageStats`."""
    prompt_tokens = _get(usage_obj, "prompt_tokens") or 0
    completion_tokens = _get(usage_obj, "completion_tokens") or 0
    total_tokens = _get(usage_obj, "total_tokens")

    cached = 0
    ptd = _get(usage_obj, "prompt_tokens_details")
    if ptd is not None:
        cached = _get(ptd, "cached_tokens") or 0

    reasoning = 0
    ctd = _get(usage_obj, "completion_tokens_details")
    if ctd is not None:
        reasoning = _get(ctd, "reasoning_tokens") or 0

    return UsageStats(
        input_tokens=prompt_tokens,
        output_tokens=completion_tokens,
        total_tokens=total_tokens if total_tokens is not None else prompt_tokens + completion_tokens,
        cached_tokens=cached,
        reasoning_tokens=reasoning,
    )


def safe_tool_names(tools: list[AgentTool]) -> dict[str, AgentTool]:
    """Map wire-safe function names to tools.

    Function names may only contain ``[a-zA-Z0-9_-]``; clashes after
    sanitising get a numeric suffix.
    """
    named: dict[str, AgentTool] = {}
    for tool in tools:
        if not tool.name:
            continue
        base = _UNSAFE_NAME_CHARS.sub("_", tool.name) or "tool"
        safe, n = base, 1
        while safe in named:
            n += 1
            safe = f"{base}_{n}"
        named[safe] = tool
    return named


def build_response_format(schema: dict[str, Any]) -> dict[str, Any]:
    """``response_format`` for a structured-output description.

    Raises:
        InvalidResponseSchemaError: See :func:`normalize_response_schema`.
    """
    return {"type": "json_schema", "json_schema": normalize_response_schema(schema)}


class _ToolCallBuffer:
    """Accumulates streamed tool-call fragments by index."""

    def __init__(self) -> None:
        self.calls: dict[int, dict[str, Any]] = {}

    def add(self, delta_tool_calls: Any) -> None:
        for tc in delta_tool_calls:
            idx = _get(tc, "index")
            if idx is None:
                idx = 0
            entry = self.calls.setdefault(int(idx), {"id": None, "name": None, "arguments": ""})
            if _get(tc, "id"):
                entry["id"] = _get(tc, "id")
            fn = _get(tc, "function")
            if fn is not None:
                if _get(fn, "name"):
                    entry["name"] = _get(fn, "name")
                if _get(fn, "arguments"):
                    entry["arguments"] += _get(fn, "arguments")

    def ordered(self) -> list[dict[str, Any]]:
        return [tc for _, tc in sorted(self.calls.items(), key=lambda kv: kv[0])]


class OpenAIAdapter:
    """OpenAI Chat Completions adapter implementing ``ProviderAdapter``.

    Args:
        client_factory: Builds an ``AsyncOpenAI`` client from an API key.
    """

    vendor = Vendor.OPENAI
    max_tokens_param = "max_completion_tokens"

    def __init__(self, client_factory: Optional[Callable[[str], Any]] = None):
        self._client_factory = client_factory or self.default_client

    def default_client(self, api_key: str) -> Any:
        return openai.AsyncOpenAI(api_key=api_key)

    async def stream(self, request: StreamRequest) -> TaskStreamHandle:
        client = self._client_factory(request.api_key)
        return start_stream(self._run(client, request), request.callbacks)

    def initial_messages(self, request: StreamRequest) -> list[dict[str, Any]]:
        payload = request.payload
        if payload.shape is WireShape.SYSTEM_MESSAGES:
            system = [{"role": "system", "content": list(payload.system_blocks)}] if payload.system_blocks else []
            return system + list(payload.messages)
        return payload.role_array()

    def build_params(
        self,
        request: StreamRequest,
        messages: list[dict[str, Any]],
        tool_names: dict[str, AgentTool],
    ) -> dict[str, Any]:
        sampling = request.sampling
        params: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "stream": True,
            "stream_options": {"include_usage": True},
            self.max_tokens_param: request.max_output_tokens,
        }

        reasoning_model = supports_reasoning_effort(request.model)
        if reasoning_model and sampling.reasoning_effort:
            params["reasoning_effort"] = sampling.reasoning_effort
        if sampling.temperature is not None and not reasoning_model:
            params["temperature"] = sampling.temperature

        if tool_names:
            tools = []
            for safe, tool in tool_names.items():
                definition = to_openai_tool(tool)
                definition["function"]["name"] = safe
                tools.append(definition)
            params["tools"] = tools
            params["tool_choice"] = "auto"

        if request.response_schema:
            params["response_format"] = build_response_format(request.response_schema)
        return params

    async def _open(self, client: Any, params: dict[str, Any]) -> Any:
        """Open the stream, dropping parameters the model rejects once."""
        try:
            return await client.chat.completions.create(**params)
        except openai.BadRequestError as e:
            message = str(e)
            retry = dict(params)
            if "response_format" in retry and _RESPONSE_FORMAT_REJECTED.search(message):
                retry.pop("response_format")
            elif "temperature" in retry and _TEMPERATURE_REJECTED.search(message):
                retry.pop("temperature")
            else:
                raise
            logger.warning("Retrying without rejected parameter", model=params.get("model"), error=message)
            return await client.chat.completions.create(**retry)

    async def _run(self, client: Any, request: StreamRequest) -> None:
        callbacks = request.callbacks
        tool_names = safe_tool_names(request.tools)
        by_name = {t.name: t for t in tool_names.values()}
        messages = self.initial_messages(request)
        running = UsageStats(total_tokens=0)

        for step in range(1, MAX_TOOL_STEPS + 1):
            params = self.build_params(request, messages, tool_names)
            logger.debug("Chat completions step", vendor=self.vendor.value, step=step, model=request.model)

            text_parts: list[str] = []
            reasoning_parts: list[str] = []
            buffer = _ToolCallBuffer()
            final_usage: Any = None

            stream = await self._open(client, params)
            headers = response_headers(stream)
            if headers:
                callbacks.on_headers(headers)
            async with stream:
                async for chunk in stream:
                    if _get(chunk, "usage") is not None:
                        final_usage = _get(chunk, "usage")
                    choices = _get(chunk, "choices")
                    if not choices:
                        continue
                    choice = choices[0]
                    delta = _get(choice, "delta")
                    if delta is None:
                        continue

                    reasoning = _get(delta, "reasoning_content") or _get(delta, "reasoning")
                    if isinstance(reasoning, str) and reasoning:
                        reasoning_parts.append(reasoning)
                        callbacks.on_reasoning(reasoning)

                    text = _get(delta, "content")
                    if text:
                        text_parts.append(text)
                        callbacks.on_chunk(text)

                    delta_tool_calls = _get(delta, "tool_calls")
                    if delta_tool_calls:
                        buffer.add(delta_tool_calls)

            tool_calls = buffer.ordered()
            if final_usage is not None:
                step_usage = convert_usage(final_usage)
                running = UsageStats(
                    input_tokens=running.input_tokens + step_usage.input_tokens,
                    output_tokens=running.output_tokens + step_usage.output_tokens,
                    total_tokens=running.total + step_usage.total,
                    cached_tokens=running.cached_tokens + step_usage.cached_tokens,
                    reasoning_tokens=running.reasoning_tokens + step_usage.reasoning_tokens,
                    step_count=step,
                )
                callbacks.on_token_usage(
                    running.copy(),
                    StepOutput(
                        text="".join(text_parts),
                        reasoning="".join(reasoning_parts),
                        tool_args=[tc["arguments"] for tc in tool_calls],
                    ),
                )

            if not tool_calls:
                return

            assistant_msg: dict[str, Any] = {
                "role": "assistant",
                "tool_calls": [
                    {
                        "id": tc["id"],
                        "type": "function",
                        "function": {"name": tc["name"], "arguments": tc["arguments"] or "{}"},
                    }
                    for tc in tool_calls
                ],
            }
            if text_parts:
                assistant_msg["content"] = "".join(text_parts)
            messages.append(assistant_msg)

            for tc in tool_calls:
                tool = tool_names.get(tc["name"] or "")
                name = tool.name if tool is not None else (tc["name"] or "")
                output, _ = await execute_tool_call(
                    by_name,
                    name,
                    tc["id"],
                    parse_tool_arguments(tc["arguments"]),
                    callbacks,
                )
                messages.append({"role": "tool", "tool_call_id": tc["id"], "content": output})

        logger.warning("Tool loop step limit reached", model=request.model, steps=MAX_TOOL_STEPS)


class OpenAICompatibleAdapter(OpenAIAdapter):
    """Chat Completions against another vendor's OpenAI-compatible endpoint.

    Args:
        vendor: One of ``gemini``, ``fireworks``, ``xai``, ``openrouter``.
        client_factory: Builds the client from an API key; defaults to
            ``AsyncOpenAI`` with the vendor's ``base_url``.
        base_url: Overrides the vendor's default endpoint.
    """

    max_tokens_param = "max_tokens"

    def __init__(
        self,
        vendor: Vendor,
        client_factory: Optional[Callable[[str], Any]] = None,
        base_url: Optional[str] = None,
    ):
        if vendor not in BASE_URLS and base_url is None:
            raise ValueError(f"No OpenAI-compatible endpoint known for {vendor.value}")
        self.vendor = vendor
        self.base_url = base_url or BASE_URLS[vendor]
        super().__init__(client_factory)

    def default_client(self, api_key: str) -> Any:
        return openai.AsyncOpenAI(api_key=api_key, base_url=self.base_url)
