"""
Vendor-neutral LLM streaming service

Send one conversational turn to Anthropic, OpenAI, Gemini, Fireworks, xAI
or OpenRouter and get a normalized, incrementally streamed response, with
token usage and cost tracking, proactive rate limiting, bounded retries and
mid-stream cancellation.

Main exports:
    - LLMService: The request/response orchestrator
    - ServiceRequest / ServiceResponse: Per-call input and result
    - ConversationContext / InMemoryContextManager: Conversation state
    - CancellationToken: Cancels a call at any suspension point
    - Event sinks: CallbackEventSink, QueueEventSink, NullEventSink

Example:
    >>> from llm_service import (
    ...     LLMService, ServiceRequest, ConversationContext,
    ...     InMemoryContextManager, EnvCredentialSource, QueueEventSink,
    ... )
    >>> service = LLMService(EnvCredentialSource())
    >>> manager = InMemoryContextManager(
    ...     ConversationContext(provider="anthropic", model="claude-sonnet-4-5")
    ... )
    >>> sink = QueueEventSink()
    >>> response = await service.chat(ServiceRequest(message="Hello!"), manager, sink)
"""

# Optional: Load environment variables if dotenv is available
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # dotenv not installed, skip loading .env file

from .config import EnvCredentialSource, ServiceConfig, StaticCredentialSource
from .context import ContextManager, ConversationContext, InMemoryContextManager
from .core.cancellation import CancellationToken
from .core.errors import (
    InvalidResponseSchemaError,
    LLMServiceError,
    MissingCredentialError,
    RateLimitedError,
    RequestCancelledError,
    StreamError,
    UnknownProviderError,
    UnsupportedProviderError,
)
from .core.rate_limits import RateLimitTracker
from .core.retry import RetryPolicy, with_retries
from .core.service import LLMService, ServiceState
from .core.types import ChatMessage, ModelOverrides, ServiceRequest, ServiceResponse
from .core.usage import UsageStats
from .core.vendors import Vendor
from .events import (
    CallbackEventSink,
    ChunkEvent,
    ErrorEvent,
    EventSink,
    NullEventSink,
    QueueEventSink,
    RateLimitWaitEvent,
    ReasoningEvent,
    TokenUsageEvent,
    ToolEndEvent,
    ToolErrorEvent,
    ToolStartEvent,
    UsageBreakdownEvent,
)
from .tools import AgentTool, ToolPolicy, tool

__version__ = "0.1.0"

__all__ = [
    # Service
    'LLMService',
    'ServiceState',
    'ServiceRequest',
    'ServiceResponse',
    'ServiceConfig',
    # Context
    'ChatMessage',
    'ModelOverrides',
    'ConversationContext',
    'ContextManager',
    'InMemoryContextManager',
    # Collaborators
    'CancellationToken',
    'EnvCredentialSource',
    'StaticCredentialSource',
    'RateLimitTracker',
    'RetryPolicy',
    'with_retries',
    'Vendor',
    'UsageStats',
    # Tools
    'AgentTool',
    'ToolPolicy',
    'tool',
    # Events
    'EventSink',
    'CallbackEventSink',
    'QueueEventSink',
    'NullEventSink',
    'ChunkEvent',
    'ReasoningEvent',
    'ToolStartEvent',
    'ToolEndEvent',
    'ToolErrorEvent',
    'RateLimitWaitEvent',
    'TokenUsageEvent',
    'UsageBreakdownEvent',
    'ErrorEvent',
    # Errors
    'LLMServiceError',
    'UnknownProviderError',
    'UnsupportedProviderError',
    'MissingCredentialError',
    'RateLimitedError',
    'StreamError',
    'RequestCancelledError',
    'InvalidResponseSchemaError',
]
