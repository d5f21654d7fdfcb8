"""Tests for the Anthropic adapter against a fake SDK client."""

from __future__ import annotations

import asyncio
import copy
from types import SimpleNamespace
from typing import Any

import pytest

from llm_service.core.errors import RequestCancelledError, StreamError
from llm_service.core.formatting import format_stateless
from llm_service.core.protocols import StreamCallbacks, StreamRequest
from llm_service.core.types import SamplingParams
from llm_service.core.vendors import Vendor, WireShape
from llm_service.providers.anthropic import AnthropicAdapter, convert_usage
from llm_service.tools.base import AgentTool


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

def text_delta(text: str) -> dict[str, Any]:
    return {"type": "content_block_delta", "delta": {"type": "text_delta", "text": text}}


def thinking_delta(text: str) -> dict[str, Any]:
    return {"type": "content_block_delta", "delta": {"type": "thinking_delta", "thinking": text}}


class FakeStream:
    """Mimics ``AsyncMessageStream``: async context manager and async iterator."""

    def __init__(self, events: list[Any], final_message: dict[str, Any], headers: dict[str, str] | None = None, hang: bool = False):
        self.events = events
        self.final_message = final_message
        self.response = SimpleNamespace(headers=headers or {})
        self.hang = hang

    async def __aenter__(self) -> "FakeStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False

    def __aiter__(self):
        return self._events()

    async def _events(self):
        for event in self.events:
            yield event
        if self.hang:
            await asyncio.Event().wait()

    async def get_final_message(self) -> dict[str, Any]:
        return self.final_message


class FakeMessages:
    def __init__(self, streams: list[Any]):
        self.streams = list(streams)
        self.calls: list[dict[str, Any]] = []

    def stream(self, **params: Any) -> FakeStream:
        self.calls.append(copy.deepcopy(params))
        item = self.streams.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class FakeClient:
    def __init__(self, streams: list[Any]):
        self.messages = FakeMessages(streams)


class Recorder:
    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.reasoning: list[str] = []
        self.usage: list[Any] = []
        self.tool_events: list[tuple] = []
        self.headers: list[dict] = []
        self.errors: list[BaseException] = []
        self.done = 0

    def callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_chunk=self.chunks.append,
            on_reasoning=self.reasoning.append,
            on_tool_start=lambda name, call_id, args: self.tool_events.append(("start", name, call_id, args)),
            on_tool_end=lambda name, call_id, result: self.tool_events.append(("end", name, call_id, result)),
            on_tool_error=lambda name, call_id, error: self.tool_events.append(("error", name, call_id, error)),
            on_token_usage=lambda usage, step: self.usage.append((usage, step)),
            on_headers=self.headers.append,
            on_done=self._done,
            on_error=self.errors.append,
        )

    def _done(self) -> None:
        self.done += 1


class HTTPError(Exception):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def _request(recorder: Recorder, **kwargs: Any) -> StreamRequest:
    return StreamRequest(
        vendor=Vendor.ANTHROPIC,
        api_key="sk-ant",
        model=kwargs.pop("model", "claude-3-5-haiku-latest"),
        payload=format_stateless("What is in a.py?", "Be brief.", WireShape.SYSTEM_MESSAGES),
        callbacks=recorder.callbacks(),
        **kwargs,
    )


def _run(client: FakeClient, request: StreamRequest) -> None:
    async def run() -> None:
        handle = await AnthropicAdapter(client_factory=lambda key: client).stream(request)
        await handle.wait()

    asyncio.run(run())


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

def test_convert_usage_counts_cache_as_input() -> None:
    usage = convert_usage({
        "input_tokens": 10,
        "cache_read_input_tokens": 80,
        "cache_creation_input_tokens": 5,
        "output_tokens": 7,
    })
    assert usage.input_tokens == 95
    assert usage.cached_tokens == 80
    assert usage.total == 102


def test_streams_text_and_thinking() -> None:
    recorder = Recorder()
    client = FakeClient([
        FakeStream(
            [thinking_delta("Hmm. "), text_delta("Hello"), {"type": "message_stop"}, text_delta(" there")],
            {"content": [{"type": "text", "text": "Hello there"}], "stop_reason": "end_turn",
             "usage": {"input_tokens": 12, "output_tokens": 3}},
            headers={"anthropic-ratelimit-requests-remaining": "49"},
        )
    ])

    _run(client, _request(recorder))

    assert recorder.chunks == ["Hello", " there"]
    assert recorder.reasoning == ["Hmm. "]
    assert recorder.headers == [{"anthropic-ratelimit-requests-remaining": "49"}]
    assert recorder.done == 1
    (usage, step), = recorder.usage
    assert (usage.input_tokens, usage.output_tokens, usage.step_count) == (12, 3, 1)
    assert step.text == "Hello there"

    params = client.messages.calls[0]
    assert params["system"] == [{"type": "text", "text": "Be brief.", "cache_control": {"type": "ephemeral"}}]
    assert all(m["role"] != "system" for m in params["messages"])


def test_tool_loop_feeds_results_back() -> None:
    recorder = Recorder()
    lookup = AgentTool(
        name="lookup",
        description="Look up a file.",
        run=lambda args: f"contents of {args['path']}",
        parameters={"type": "object", "properties": {"path": {"type": "string"}}},
    )
    client = FakeClient([
        FakeStream(
            [text_delta("Let me check.")],
            {
                "content": [
                    {"type": "text", "text": "Let me check."},
                    {"type": "tool_use", "id": "tu_1", "name": "lookup", "input": {"path": "a.py"}},
                ],
                "stop_reason": "tool_use",
                "usage": {"input_tokens": 100, "output_tokens": 20},
            },
        ),
        FakeStream(
            [text_delta(" It defines main().")],
            {"content": [{"type": "text", "text": " It defines main()."}], "stop_reason": "end_turn",
             "usage": {"input_tokens": 150, "output_tokens": 10}},
        ),
    ])

    _run(client, _request(recorder, tools=[lookup]))

    assert recorder.chunks == ["Let me check.", " It defines main()."]
    assert recorder.tool_events == [
        ("start", "lookup", "tu_1", {"path": "a.py"}),
        ("end", "lookup", "tu_1", "contents of a.py"),
    ]

    # Running totals so the Service can read them as cumulative
    totals = [(u.input_tokens, u.output_tokens, u.total, u.step_count) for u, _ in recorder.usage]
    assert totals == [(100, 20, 120, 1), (250, 30, 280, 2)]
    assert recorder.usage[0][1].tool_args == ['{"path": "a.py"}']

    first, second = client.messages.calls
    assert first["tools"][0]["name"] == "lookup"
    assert second["messages"][-2]["role"] == "assistant"
    assert second["messages"][-1] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "tu_1", "content": "contents of a.py"}],
    }


def test_failing_tool_becomes_error_result() -> None:
    recorder = Recorder()

    def broken(args: dict[str, Any]) -> str:
        raise RuntimeError("disk on fire")

    client = FakeClient([
        FakeStream(
            [],
            {"content": [{"type": "tool_use", "id": "tu_1", "name": "broken", "input": {}},
                         {"type": "tool_use", "id": "tu_2", "name": "missing", "input": {}}],
             "stop_reason": "tool_use", "usage": {"input_tokens": 10, "output_tokens": 5}},
        ),
        FakeStream([text_delta("Sorry.")], {"content": [], "stop_reason": "end_turn",
                                            "usage": {"input_tokens": 20, "output_tokens": 2}}),
    ])

    _run(client, _request(recorder, tools=[AgentTool(name="broken", description="", run=broken)]))

    results = client.messages.calls[1]["messages"][-1]["content"]
    assert results[0] == {"type": "tool_result", "tool_use_id": "tu_1", "content": "Error: disk on fire", "is_error": True}
    assert results[1]["content"] == "Error: Tool missing not found"
    assert [e[0] for e in recorder.tool_events] == ["start", "error", "error"]


def test_thinking_params() -> None:
    adapter = AnthropicAdapter(client_factory=lambda key: None)
    recorder = Recorder()

    request = _request(
        recorder,
        model="claude-sonnet-4-5",
        sampling=SamplingParams(temperature=0.5, include_thoughts=True, thinking_budget=10_000),
    )
    params = adapter.build_params(request, [])
    assert params["thinking"] == {"type": "enabled", "budget_tokens": 10_000}
    assert params["max_tokens"] == 11_024
    assert "temperature" not in params

    request = _request(recorder, sampling=SamplingParams(temperature=0.5))
    params = adapter.build_params(request, [])
    assert "thinking" not in params
    assert params["temperature"] == 0.5


def test_sdk_error_is_classified() -> None:
    recorder = Recorder()
    client = FakeClient([HTTPError("overloaded", 529)])

    with pytest.raises(StreamError) as info:
        _run(client, _request(recorder))

    assert info.value.retryable is True
    assert recorder.errors == [info.value]
    assert recorder.done == 0


def test_cancel_stops_the_stream() -> None:
    recorder = Recorder()
    client = FakeClient([
        FakeStream([text_delta("partial")], {"content": [], "stop_reason": "end_turn", "usage": {}}, hang=True)
    ])

    async def run() -> None:
        handle = await AnthropicAdapter(client_factory=lambda key: client).stream(_request(recorder))
        while not recorder.chunks:
            await asyncio.sleep(0)
        handle.cancel()
        handle.cancel()
        with pytest.raises(RequestCancelledError):
            await handle.wait()

    asyncio.run(run())
    assert recorder.chunks == ["partial"]
    assert recorder.usage == []
