"""Conversation context and the store the Service reads and appends to."""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union, runtime_checkable

from .core.types import ChatMessage, ModelOverrides


@dataclass
class ConversationContext:
    """Conversation state for one session.

    Attributes:
        messages: Ordered history. Append-only within one turn.
        provider: Default provider id.
        model: Default model id.
        system_instructions: Instructions sent ahead of the history.
        model_overrides: Per-model sampling overrides keyed by model id.
        temperature: Normalised 0-1 temperature.
        reasoning_effort: Context-level reasoning effort.
        include_thoughts: Context-level include/exclude for reasoning output.
        thinking_budget: Context-level reasoning token budget.
        context_id: Identifier used in log context.
    """
    messages: list[ChatMessage] = field(default_factory=list)
    provider: Optional[str] = None
    model: Optional[str] = None
    system_instructions: Optional[str] = None
    model_overrides: dict[str, ModelOverrides] = field(default_factory=dict)
    temperature: Optional[float] = None
    reasoning_effort: Optional[str] = None
    include_thoughts: Optional[bool] = None
    thinking_budget: Optional[int] = None
    context_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def override_for(self, model: Optional[str]) -> Optional[ModelOverrides]:
        if not model:
            return None
        return self.model_overrides.get(model)

    @property
    def last_message(self) -> Optional[ChatMessage]:
        return self.messages[-1] if self.messages else None


@runtime_checkable
class ContextManager(Protocol):
    """Owner of a :class:`ConversationContext`.

    The Service only calls :meth:`get` and :meth:`add_message`. Serialising
    concurrent turns against the same context is the owner's job.
    """

    def get(self) -> ConversationContext:
        """Return a snapshot of the current context."""
        ...

    def add_message(self, message: ChatMessage) -> None:
        """Append one message to the history."""
        ...


class InMemoryContextManager:
    """Process-local :class:`ContextManager`.

    :meth:`get` returns a deep copy, so callers can never mutate the stored
    history except through :meth:`add_message`.

    Example:
        >>> manager = InMemoryContextManager(ConversationContext(provider="openai", model="gpt-4o"))
        >>> manager.add_message(ChatMessage(role="user", content="hi"))
        >>> len(manager.get().messages)
        1
    """

    def __init__(self, context: Optional[ConversationContext] = None):
        self._context = context or ConversationContext()

    def get(self) -> ConversationContext:
        return copy.deepcopy(self._context)

    def add_message(self, message: Union[ChatMessage, dict[str, Any]]) -> None:
        if isinstance(message, dict):
            message = ChatMessage(
                role=message["role"],
                content=message.get("content", ""),
                reasoning=message.get("reasoning"),
            )
        self._context.messages.append(message)

    def add_messages(self, messages: list[ChatMessage]) -> None:
        for message in messages:
            self.add_message(message)

    def set_system_instructions(self, text: Optional[str]) -> None:
        self._context.system_instructions = text

    def set_provider_model(self, provider: str, model: str) -> None:
        self._context.provider = provider
        self._context.model = model

    def reset_history(self) -> None:
        self._context.messages = []
