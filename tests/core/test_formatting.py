"""Tests for context-to-wire formatting."""

from __future__ import annotations

import pytest

from llm_service.context import ConversationContext
from llm_service.core.errors import InvalidResponseSchemaError
from llm_service.core.formatting import (
    build_loggable_payload,
    format_context,
    format_stateless,
    normalize_response_schema,
)
from llm_service.core.types import ChatMessage
from llm_service.core.vendors import Vendor, WireShape


def _context(**kwargs) -> ConversationContext:
    return ConversationContext(
        messages=[
            ChatMessage(role="user", content="hi"),
            ChatMessage(role="assistant", content="hello", reasoning="greet back"),
            ChatMessage(role="user", content="how are you?"),
        ],
        **kwargs,
    )


def test_anthropic_messages_never_contain_system_role() -> None:
    context = _context(system_instructions="Be brief.")
    context.messages.insert(0, ChatMessage(role="system", content="Extra rules."))

    payload = format_context(context, Vendor.ANTHROPIC, "claude-sonnet-4-5")

    assert payload.shape is WireShape.SYSTEM_MESSAGES
    assert all(m["role"] != "system" for m in payload.messages)
    assert [b["text"] for b in payload.system_blocks] == ["Be brief.", "Extra rules."]
    assert all(b["cache_control"] == {"type": "ephemeral"} for b in payload.system_blocks)


def test_role_array_leads_with_system_entry() -> None:
    payload = format_context(_context(system_instructions="Be brief."), Vendor.OPENAI, "gpt-4o")

    messages = payload.role_array()
    assert messages[0] == {"role": "system", "content": "Be brief."}
    assert [m["role"] for m in messages[1:]] == ["user", "assistant", "user"]
    assert messages[2]["content"] == "hello"


def test_role_array_without_instructions_has_no_system_entry() -> None:
    payload = format_context(_context(), Vendor.XAI, "grok-4")
    assert payload.role_array()[0]["role"] == "user"


def test_fireworks_embeds_prior_reasoning() -> None:
    payload = format_context(_context(), Vendor.FIREWORKS, "accounts/fireworks/models/deepseek-r1")
    assert payload.messages[1]["content"] == "<think>greet back</think>\nhello"


def test_openrouter_claude_uses_system_messages() -> None:
    payload = format_context(_context(system_instructions="x"), Vendor.OPENROUTER, "anthropic/claude-sonnet-4")
    assert payload.shape is WireShape.SYSTEM_MESSAGES


def test_structured_content_passes_through() -> None:
    blocks = [{"type": "text", "text": "look"}, {"type": "image", "source": {"type": "url", "url": "u"}}]
    context = ConversationContext(messages=[ChatMessage(role="user", content=blocks)])

    for vendor, model in ((Vendor.ANTHROPIC, "claude-sonnet-4-5"), (Vendor.OPENAI, "gpt-4o")):
        payload = format_context(context, vendor, model)
        assert payload.messages[0]["content"] == blocks


def test_stateless_payload_has_only_the_incoming_message() -> None:
    payload = format_stateless("one-off", "Summarise.", WireShape.ROLE_ARRAY)
    assert payload.role_array() == [
        {"role": "system", "content": "Summarise."},
        {"role": "user", "content": "one-off"},
    ]

    payload = format_stateless("one-off", None, WireShape.SYSTEM_MESSAGES)
    assert payload.system_blocks == []
    assert payload.messages == [{"role": "user", "content": "one-off"}]


def test_loggable_payload_truncates_and_drops_secrets() -> None:
    context = ConversationContext(messages=[ChatMessage(role="user", content="x" * 500)])
    payload = format_context(context, Vendor.OPENAI, "gpt-4o")

    out = build_loggable_payload(Vendor.OPENAI, payload, model="gpt-4o", extra={"api_key": "sk-1", "step": 1})

    assert "api_key" not in out
    assert out["step"] == 1
    assert len(out["messages"][0]["preview"]) == 201


def test_normalize_named_schema() -> None:
    schema = {"name": "answer", "schema": {"type": "object", "properties": {"a": {"type": "string"}}}, "strict": True}
    assert normalize_response_schema(schema) == schema


def test_normalize_bare_schema_gets_default_name() -> None:
    body = {"type": "object", "properties": {"a": {"type": "string"}}}
    assert normalize_response_schema(body) == {"name": "response", "schema": body}


@pytest.mark.parametrize(
    "schema",
    [
        "not a dict",
        {"name": "answer"},
        {"name": "bad name!", "schema": {"type": "object"}},
    ],
)
def test_malformed_schema_raises(schema) -> None:
    with pytest.raises(InvalidResponseSchemaError):
        normalize_response_schema(schema)
