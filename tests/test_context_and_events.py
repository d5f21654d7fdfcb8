import asyncio

from llm_service.context import ConversationContext, InMemoryContextManager
from llm_service.core.types import ChatMessage, ModelOverrides, ServiceResponse, content_equal
from llm_service.events import CallbackEventSink, ChunkEvent, ErrorEvent, QueueEventSink, event_to_dict


def test_get_returns_a_copy() -> None:
    manager = InMemoryContextManager(ConversationContext(provider="openai", model="gpt-4o"))
    snapshot = manager.get()
    snapshot.messages.append(ChatMessage(role="user", content="sneaky"))
    assert manager.get().messages == []


def test_add_message_accepts_dicts() -> None:
    manager = InMemoryContextManager()
    manager.add_message({"role": "assistant", "content": "hi", "reasoning": "r"})
    (message,) = manager.get().messages
    assert message == ChatMessage(role="assistant", content="hi", reasoning="r")


def test_override_lookup() -> None:
    context = ConversationContext(model_overrides={"o3": ModelOverrides(reasoning_effort="high")})
    assert context.override_for("o3").reasoning_effort == "high"
    assert context.override_for("gpt-4o") is None
    assert context.override_for(None) is None


def test_model_overrides_accept_camel_case() -> None:
    overrides = ModelOverrides.from_dict({"reasoningEffort": "low", "includeThoughts": False, "thinkingBudget": 512})
    assert overrides == ModelOverrides(reasoning_effort="low", include_thoughts=False, thinking_budget=512)


def test_content_equal() -> None:
    assert content_equal(" hi ", "hi")
    assert content_equal([{"type": "text", "text": "a"}], [{"text": "a", "type": "text"}])
    assert not content_equal("a", [{"type": "text", "text": "a"}])


def test_response_ok_and_dict() -> None:
    assert ServiceResponse(text="hi").ok
    assert not ServiceResponse(text="partial", error="Request cancelled").ok
    assert ServiceResponse(text="x", error="e").to_dict() == {"text": "x", "error": "e"}


def test_callback_sink_swallows_callback_errors() -> None:
    received = []

    def callback(event) -> None:
        received.append(event)
        raise RuntimeError("ui went away")

    sink = CallbackEventSink(callback)
    sink.emit(ChunkEvent("openai", "gpt-4o", "hi"))
    assert len(received) == 1


def test_queue_sink() -> None:
    async def run():
        sink = QueueEventSink()
        sink.emit(ErrorEvent("openai", "gpt-4o", "boom"))
        return await sink.queue.get()

    event = asyncio.run(run())
    assert event_to_dict(event) == {"provider": "openai", "model": "gpt-4o", "error": "boom", "type": "error"}


def test_owner_side_helpers() -> None:
    manager = InMemoryContextManager()
    manager.set_provider_model("anthropic", "claude-sonnet-4-5")
    manager.set_system_instructions("Be brief.")
    manager.add_messages([ChatMessage(role="user", content="a"), ChatMessage(role="assistant", content="b")])
    context = manager.get()
    assert (context.provider, context.model, context.system_instructions) == ("anthropic", "claude-sonnet-4-5", "Be brief.")
    assert [m.role for m in context.messages] == ["user", "assistant"]

    manager.reset_history()
    assert manager.get().messages == []
    assert manager.get().system_instructions == "Be brief."
