"""Conversation context to vendor wire payloads.

Two layouts are produced:

* ROLE_ARRAY: a flat ``[{"role", "content"}]`` list with the system
  instructions as a leading ``system`` entry.
* SYSTEM_MESSAGES: cache-annotated system blocks held apart from a list
  that only contains ``user`` and ``assistant`` entries.

Structured (list) content is passed through untouched in both layouts.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional, Sequence

from .errors import InvalidResponseSchemaError
from .token_counting import estimate_tokens_heuristic
from .types import ChatMessage, MessageContent, content_as_text
from .vendors import Vendor, WireShape, capabilities_for

if TYPE_CHECKING:
    from ..context import ConversationContext

PREVIEW_CHARS = 200

_SCHEMA_NAME = re.compile(r"^[a-zA-Z0-9_-]+$")


def cache_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text, "cache_control": {"type": "ephemeral"}}


@dataclass
class WirePayload:
    """Vendor-ready conversation.

    ``messages`` never contains ``system`` entries. For ROLE_ARRAY vendors
    the instructions travel in ``system_text`` and :meth:`role_array`
    re-attaches them as the leading entry; for SYSTEM_MESSAGES vendors they
    travel in ``system_blocks``.
    """
    shape: WireShape
    messages: list[dict[str, Any]] = field(default_factory=list)
    system_text: Optional[str] = None
    system_blocks: list[dict[str, Any]] = field(default_factory=list)

    def role_array(self) -> list[dict[str, Any]]:
        if self.system_text:
            return [{"role": "system", "content": self.system_text}] + list(self.messages)
        return list(self.messages)

    @property
    def instructions(self) -> str:
        if self.shape is WireShape.SYSTEM_MESSAGES:
            return "\n\n".join(b.get("text", "") for b in self.system_blocks)
        return self.system_text or ""


def _embed_reasoning(content: MessageContent, reasoning: Optional[str]) -> MessageContent:
    trimmed = (reasoning or "").strip()
    if not trimmed:
        return content
    if isinstance(content, str):
        suffix = f"\n{content}" if content else ""
        return f"<think>{trimmed}</think>{suffix}"
    return [{"type": "text", "text": f"<think>{trimmed}</think>"}] + list(content)


def _split_system(messages: Sequence[ChatMessage], system_instructions: Optional[str]) -> tuple[list[str], list[ChatMessage]]:
    system_parts = [system_instructions] if system_instructions else []
    rest: list[ChatMessage] = []
    for message in messages:
        if message.role == "system":
            text = content_as_text(message.content)
            if text:
                system_parts.append(text)
        else:
            rest.append(message)
    return system_parts, rest


def format_role_array(context: "ConversationContext", vendor: Vendor) -> WirePayload:
    """Build a ROLE_ARRAY payload from the full context history.

    System-role history entries are folded into ``system_text`` after the
    context instructions. Fireworks gets prior reasoning inline.
    """
    embed = capabilities_for(vendor, context.model).embeds_reasoning
    system_parts, history = _split_system(context.messages, context.system_instructions)
    messages = []
    for message in history:
        content = message.content
        if message.role == "assistant" and embed:
            content = _embed_reasoning(content, message.reasoning)
        messages.append({"role": message.role, "content": content})
    return WirePayload(
        shape=WireShape.ROLE_ARRAY,
        messages=messages,
        system_text="\n\n".join(system_parts) or None,
    )


def format_system_messages(context: "ConversationContext") -> WirePayload:
    """Build a SYSTEM_MESSAGES payload with one cache block per instruction."""
    system_parts, history = _split_system(context.messages, context.system_instructions)
    return WirePayload(
        shape=WireShape.SYSTEM_MESSAGES,
        messages=[{"role": m.role, "content": m.content} for m in history],
        system_blocks=[cache_block(text) for text in system_parts],
    )


def format_context(context: "ConversationContext", vendor: Vendor, model: Optional[str] = None) -> WirePayload:
    shape = capabilities_for(vendor, model or context.model).wire_shape
    if shape is WireShape.SYSTEM_MESSAGES:
        return format_system_messages(context)
    return format_role_array(context, vendor)


def format_stateless(message: MessageContent, system_text: Optional[str], shape: WireShape) -> WirePayload:
    """Payload for a ``skip_history`` call: the one incoming message only."""
    messages = [{"role": "user", "content": message}]
    if shape is WireShape.SYSTEM_MESSAGES:
        return WirePayload(
            shape=shape,
            messages=messages,
            system_blocks=[cache_block(system_text)] if system_text else [],
        )
    return WirePayload(shape=shape, messages=messages, system_text=system_text or None)


def estimate_input_tokens(payload: WirePayload) -> int:
    """Heuristic prompt size used for best-effort usage on cancellation."""
    total = 0
    if payload.shape is WireShape.SYSTEM_MESSAGES:
        for block in payload.system_blocks:
            total += estimate_tokens_heuristic(block.get("text"))
    else:
        total += estimate_tokens_heuristic(payload.system_text)
    for message in payload.messages:
        total += estimate_tokens_heuristic(content_as_text(message.get("content", "")))
    return total


def _preview(value: Any, limit: int = PREVIEW_CHARS) -> str:
    try:
        text = value if isinstance(value, str) else json.dumps(value, default=str)
    except (TypeError, ValueError):
        return ""
    return text[:limit] + "…" if len(text) > limit else text


def build_loggable_payload(
    vendor: Vendor,
    payload: WirePayload,
    *,
    model: Optional[str] = None,
    tools: Optional[Sequence[Any]] = None,
    response_schema: Optional[dict[str, Any]] = None,
    extra: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Sanitised summary of an outgoing request for debug logs.

    Message bodies are cut to 200-character previews and any ``api_key``
    in *extra* is dropped.
    """
    out: dict[str, Any] = {"provider": vendor.value, "model": model, "shape": payload.shape.value}
    if extra:
        out.update({k: v for k, v in extra.items() if k not in ("api_key", "apiKey", "credential")})

    if payload.shape is WireShape.SYSTEM_MESSAGES:
        out["system_blocks"] = len(payload.system_blocks)
    elif payload.system_text:
        out["instructions"] = _preview(payload.system_text)

    out["messages"] = [
        {"idx": i, "role": m.get("role"), "preview": _preview(m.get("content"))}
        for i, m in enumerate(payload.messages)
    ]

    if response_schema:
        out["response_schema"] = {
            "name": response_schema.get("name"),
            "strict": bool(response_schema.get("strict")),
            "keys": list((response_schema.get("schema") or response_schema).get("properties", {}).keys()),
        }
    if tools:
        out["tools"] = [getattr(t, "name", None) for t in tools if getattr(t, "name", None)]
    return out


def normalize_response_schema(schema: Any) -> dict[str, Any]:
    """Validate a structured-output description.

    Accepts ``{"name", "schema", "strict"}`` or a bare JSON schema (one with
    ``properties``), which is named ``response``.

    Raises:
        InvalidResponseSchemaError: If no object schema can be found or the
            name is not ``[a-zA-Z0-9_-]+``.
    """
    if not isinstance(schema, dict):
        raise InvalidResponseSchemaError(f"Response schema must be an object, got {type(schema).__name__}")
    body = schema.get("schema")
    if body is None and "properties" in schema:
        body, schema = schema, {}
    if not isinstance(body, dict):
        raise InvalidResponseSchemaError("Response schema is missing its 'schema' object")
    name = schema.get("name") or "response"
    if not isinstance(name, str) or not _SCHEMA_NAME.match(name):
        raise InvalidResponseSchemaError(f"Invalid response schema name: {name!r}")
    out: dict[str, Any] = {"name": name, "schema": body}
    if "strict" in schema:
        out["strict"] = bool(schema["strict"])
    return out
