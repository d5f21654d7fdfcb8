"""Shared value types for requests, responses and conversation messages.

These are provider-agnostic. Vendor wire shapes are produced from them by
:mod:`llm_service.core.formatting`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

Role = Literal["system", "user", "assistant"]

# Plain text, or a structured multi-part value (a list of content blocks)
# that is passed to the vendor unchanged.
MessageContent = Union[str, list[Any]]


@dataclass
class ChatMessage:
    """One entry of a conversation.

    Attributes:
        role: ``system``, ``user`` or ``assistant``.
        content: Plain text or a list of structured content blocks.
        reasoning: Reasoning text produced alongside an assistant reply.
    """
    role: Role
    content: MessageContent
    reasoning: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.reasoning:
            data["reasoning"] = self.reasoning
        return data


def normalize_content(content: MessageContent) -> MessageContent:
    """Trim plain text; structured content is returned unchanged."""
    if isinstance(content, str):
        return content.strip()
    return content


def content_equal(a: MessageContent, b: MessageContent) -> bool:
    """Compare two contents after normalisation.

    Strings compare by value; structured values compare by their JSON form.
    """
    a, b = normalize_content(a), normalize_content(b)
    if isinstance(a, str) and isinstance(b, str):
        return a == b
    if isinstance(a, str) or isinstance(b, str):
        return False
    try:
        return json.dumps(a, sort_keys=True, default=str) == json.dumps(b, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return False


def content_as_text(content: MessageContent) -> str:
    """Flatten content into text for token estimation and logging."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and isinstance(block.get("text"), str):
            parts.append(block["text"])
        else:
            parts.append(json.dumps(block, default=str))
    return "\n".join(parts)


@dataclass
class ModelOverrides:
    """Per-model sampling overrides stored on a conversation context.

    ``None`` means "not set"; ``include_thoughts=False`` is an explicit opt-out.
    """
    temperature: Optional[float] = None
    reasoning_effort: Optional[str] = None
    include_thoughts: Optional[bool] = None
    thinking_budget: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModelOverrides":
        return cls(
            temperature=data.get("temperature"),
            reasoning_effort=data.get("reasoning_effort", data.get("reasoningEffort")),
            include_thoughts=data.get("include_thoughts", data.get("includeThoughts")),
            thinking_budget=data.get("thinking_budget", data.get("thinkingBudget")),
        )


@dataclass
class ServiceRequest:
    """One call to :meth:`LLMService.chat`.

    Attributes:
        message: The user turn, as text or structured content.
        tools: Caller-supplied tools (``AgentTool`` instances).
        response_schema: JSON schema for structured output.
        provider: Provider override; falls back to the context provider.
        model: Model override; falls back to the context model.
        skip_history: Stateless call: the context is neither read nor mutated.
        system_instructions: Per-call instructions, never persisted.
        reasoning_effort: Highest-precedence reasoning effort.
        request_id: Correlation id bound into log context.
    """
    message: MessageContent
    tools: list[Any] = field(default_factory=list)
    response_schema: Optional[dict[str, Any]] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    skip_history: bool = False
    system_instructions: Optional[str] = None
    reasoning_effort: Optional[str] = None
    request_id: Optional[str] = None


@dataclass
class ServiceResponse:
    """Result of one Service call.

    A non-empty ``error`` is authoritative even when ``text`` is non-empty.
    """
    text: str = ""
    reasoning: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.error and bool(self.text)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"text": self.text}
        if self.reasoning:
            data["reasoning"] = self.reasoning
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SamplingParams:
    """Effective sampling parameters for one call."""
    temperature: Optional[float] = None
    reasoning_effort: Optional[str] = None
    include_thoughts: bool = False
    thinking_budget: Optional[int] = None


@dataclass
class StepOutput:
    """What a single streaming step produced, reported with its usage."""
    text: str = ""
    reasoning: str = ""
    tool_args: list[str] = field(default_factory=list)
