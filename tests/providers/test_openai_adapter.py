"""Tests for the OpenAI and OpenAI-compatible adapters against a fake SDK client."""

from __future__ import annotations

import asyncio
import copy
import json
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest

from llm_service.context import ConversationContext
from llm_service.core.formatting import format_context, format_stateless
from llm_service.core.protocols import StreamCallbacks, StreamRequest
from llm_service.core.types import ChatMessage, SamplingParams
from llm_service.core.vendors import Vendor, WireShape
from llm_service.providers.openai import (
    OpenAIAdapter,
    OpenAICompatibleAdapter,
    build_response_format,
    convert_usage,
    safe_tool_names,
)
from llm_service.tools.base import AgentTool


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

def delta_chunk(**delta: Any) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(**delta))], usage=None)


def usage_chunk(prompt: int, completion: int, **extra: Any) -> SimpleNamespace:
    usage = {"prompt_tokens": prompt, "completion_tokens": completion, "total_tokens": prompt + completion, **extra}
    return SimpleNamespace(choices=[], usage=usage)


def tool_call_fragment(index: int, arguments: str, call_id: str | None = None, name: str | None = None) -> dict[str, Any]:
    fragment: dict[str, Any] = {"index": index, "function": {"arguments": arguments}}
    if call_id:
        fragment["id"] = call_id
    if name:
        fragment["function"]["name"] = name
    return fragment


class FakeStream:
    """Mimics ``AsyncStream[ChatCompletionChunk]``."""

    def __init__(self, chunks: list[Any], headers: dict[str, str] | None = None):
        self.chunks = chunks
        self.response = SimpleNamespace(headers=headers or {})

    async def __aenter__(self) -> "FakeStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False

    def __aiter__(self):
        return self._chunks()

    async def _chunks(self):
        for chunk in self.chunks:
            yield chunk


class FakeCompletions:
    def __init__(self, responses: list[Any]):
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **params: Any) -> FakeStream:
        self.calls.append(copy.deepcopy(params))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeClient:
    def __init__(self, responses: list[Any]):
        self.chat = SimpleNamespace(completions=FakeCompletions(responses))

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self.chat.completions.calls


class Recorder:
    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.reasoning: list[str] = []
        self.usage: list[Any] = []
        self.tool_events: list[tuple] = []
        self.headers: list[dict] = []

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_chunk=self.chunks.append,
            on_reasoning=self.reasoning.append,
            on_tool_start=lambda name, call_id, args: self.tool_events.append(("start", name, call_id, args)),
            on_tool_end=lambda name, call_id, result: self.tool_events.append(("end", name, call_id, result)),
            on_tool_error=lambda name, call_id, error: self.tool_events.append(("error", name, call_id, error)),
            on_token_usage=lambda usage, step: self.usage.append((usage, step)),
            on_headers=self.headers.append,
        )


def bad_request(message: str) -> openai.BadRequestError:
    response = httpx.Response(400, request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    return openai.BadRequestError(message, response=response, body=None)


def _request(recorder: Recorder, vendor: Vendor = Vendor.OPENAI, model: str = "gpt-4o", **kwargs: Any) -> StreamRequest:
    return StreamRequest(
        vendor=vendor,
        api_key="sk-test",
        model=model,
        payload=format_stateless("Hi", "Be brief.", WireShape.ROLE_ARRAY),
        callbacks=recorder.callbacks(),
        **kwargs,
    )


def _run(adapter: OpenAIAdapter, request: StreamRequest) -> None:
    async def run() -> None:
        handle = await adapter.stream(request)
        await handle.wait()

    asyncio.run(run())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_convert_usage_reads_details() -> None:
    usage = convert_usage({
        "prompt_tokens": 100,
        "completion_tokens": 40,
        "prompt_tokens_details": {"cached_tokens": 64},
        "completion_tokens_details": {"reasoning_tokens": 25},
    })
    assert (usage.input_tokens, usage.output_tokens, usage.total) == (100, 40, 140)
    assert usage.cached_tokens == 64
    assert usage.reasoning_tokens == 25


def test_safe_tool_names_sanitise_and_disambiguate() -> None:
    tools = [AgentTool(name=n, description="", run=lambda a: "") for n in ("fs.read_file", "fs_read_file", "ok-name")]
    assert list(safe_tool_names(tools)) == ["fs_read_file", "fs_read_file_2", "ok-name"]


def test_build_response_format() -> None:
    body = {"type": "object", "properties": {"answer": {"type": "string"}}}
    assert build_response_format({"name": "answer", "schema": body, "strict": True}) == {
        "type": "json_schema",
        "json_schema": {"name": "answer", "schema": body, "strict": True},
    }


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

def test_streams_text_reasoning_and_usage() -> None:
    recorder = Recorder()
    client = FakeClient([
        FakeStream(
            [
                delta_chunk(reasoning_content="thinking..."),
                delta_chunk(content="Hel"),
                delta_chunk(content="lo"),
                usage_chunk(20, 5),
            ],
            headers={"X-RateLimit-Remaining-Requests": "99"},
        )
    ])

    _run(OpenAIAdapter(client_factory=lambda key: client), _request(recorder, sampling=SamplingParams(temperature=0.7)))

    assert recorder.chunks == ["Hel", "lo"]
    assert recorder.reasoning == ["thinking..."]
    assert recorder.headers == [{"x-ratelimit-remaining-requests": "99"}]
    (usage, step), = recorder.usage
    assert (usage.input_tokens, usage.output_tokens, usage.step_count) == (20, 5, 1)
    assert step.text == "Hello"

    params = client.calls[0]
    assert params["messages"][0] == {"role": "system", "content": "Be brief."}
    assert params["stream"] is True
    assert params["stream_options"] == {"include_usage": True}
    assert params["max_completion_tokens"] == 8192
    assert params["temperature"] == 0.7
    assert "reasoning_effort" not in params
    assert "tools" not in params


def test_tool_calls_are_reassembled_and_executed() -> None:
    recorder = Recorder()
    seen: list[dict[str, Any]] = []

    def read_file(args: dict[str, Any]) -> dict[str, Any]:
        seen.append(args)
        return {"path": args["path"], "lines": 3}

    tool = AgentTool(name="fs.read_file", description="Read a file.", run=read_file)
    client = FakeClient([
        FakeStream([
            delta_chunk(tool_calls=[tool_call_fragment(0, '{"pa', call_id="call_1", name="fs_read_file")]),
            delta_chunk(tool_calls=[tool_call_fragment(0, 'th": "a.py"}')]),
            usage_chunk(50, 10),
        ]),
        FakeStream([delta_chunk(content="It has 3 lines."), usage_chunk(80, 6)]),
    ])

    _run(OpenAIAdapter(client_factory=lambda key: client), _request(recorder, tools=[tool]))

    assert seen == [{"path": "a.py"}]
    assert recorder.tool_events[0] == ("start", "fs.read_file", "call_1", {"path": "a.py"})
    assert recorder.chunks == ["It has 3 lines."]
    assert [(u.total, u.step_count) for u, _ in recorder.usage] == [(60, 1), (146, 2)]
    assert recorder.usage[0][1].tool_args == ['{"path": "a.py"}']

    first, second = client.calls
    assert first["tools"][0]["function"]["name"] == "fs_read_file"
    assert first["tool_choice"] == "auto"
    assistant, tool_message = second["messages"][-2:]
    assert assistant["tool_calls"][0]["function"] == {"name": "fs_read_file", "arguments": '{"path": "a.py"}'}
    assert tool_message == {
        "role": "tool",
        "tool_call_id": "call_1",
        "content": json.dumps({"path": "a.py", "lines": 3}),
    }


def test_rejected_response_format_is_dropped_once() -> None:
    recorder = Recorder()
    client = FakeClient([
        bad_request("response_format json_schema is not supported with this model"),
        FakeStream([delta_chunk(content='{"answer": "4"}'), usage_chunk(10, 4)]),
    ])
    schema = {"name": "answer", "schema": {"type": "object", "properties": {"answer": {"type": "string"}}}}

    _run(OpenAIAdapter(client_factory=lambda key: client), _request(recorder, response_schema=schema))

    first, second = client.calls
    assert first["response_format"]["type"] == "json_schema"
    assert "response_format" not in second
    assert recorder.chunks == ['{"answer": "4"}']


def test_unrelated_bad_request_propagates() -> None:
    recorder = Recorder()
    client = FakeClient([bad_request("context length exceeded")])

    with pytest.raises(Exception) as info:
        _run(OpenAIAdapter(client_factory=lambda key: client), _request(recorder))

    assert "context length exceeded" in str(info.value)
    assert len(client.calls) == 1


def test_reasoning_model_params() -> None:
    recorder = Recorder()
    adapter = OpenAIAdapter(client_factory=lambda key: None)
    request = _request(recorder, model="o3", sampling=SamplingParams(temperature=1.0, reasoning_effort="high"))
    params = adapter.build_params(request, [], {})
    assert params["reasoning_effort"] == "high"
    assert "temperature" not in params


# ---------------------------------------------------------------------------
# OpenAI-compatible vendors
# ---------------------------------------------------------------------------

def test_compatible_adapter_uses_max_tokens() -> None:
    recorder = Recorder()
    client = FakeClient([FakeStream([delta_chunk(content="ok"), usage_chunk(3, 1)])])
    adapter = OpenAICompatibleAdapter(Vendor.XAI, client_factory=lambda key: client)

    _run(adapter, _request(recorder, vendor=Vendor.XAI, model="grok-4"))

    params = client.calls[0]
    assert params["max_tokens"] == 8192
    assert "max_completion_tokens" not in params
    assert adapter.base_url == "https://api.x.ai/v1"


def test_compatible_adapter_needs_an_endpoint() -> None:
    with pytest.raises(ValueError):
        OpenAICompatibleAdapter(Vendor.OPENAI)
    assert OpenAICompatibleAdapter(Vendor.OPENAI, base_url="http://localhost:8000/v1").base_url.endswith("/v1")


def test_openrouter_claude_sends_system_blocks() -> None:
    recorder = Recorder()
    context = ConversationContext(
        messages=[ChatMessage(role="user", content="Hi")],
        system_instructions="Be brief.",
    )
    request = StreamRequest(
        vendor=Vendor.OPENROUTER,
        api_key="sk-or",
        model="anthropic/claude-sonnet-4",
        payload=format_context(context, Vendor.OPENROUTER, "anthropic/claude-sonnet-4"),
        callbacks=recorder.callbacks(),
    )
    adapter = OpenAICompatibleAdapter(Vendor.OPENROUTER, client_factory=lambda key: None)

    messages = adapter.initial_messages(request)
    assert messages[0]["role"] == "system"
    assert messages[0]["content"][0]["cache_control"] == {"type": "ephemeral"}
    assert messages[1] == {"role": "user", "content": "Hi"}
