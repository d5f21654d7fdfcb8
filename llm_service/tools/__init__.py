"""Caller-supplied tools: definition, schema conversion and request policies."""
from .base import AgentTool, stringify_result
from .decorators import ToolSchemaError, tool
from .policy import (
    READ_FILE_LOCKED,
    READ_LINES_LOCKED,
    ToolPolicy,
    normalize_tool_name,
    wrap_tools_with_policy,
)
from .schema_converters import (
    anthropic_to_openai,
    openai_to_anthropic,
    to_anthropic_tool,
    to_openai_tool,
)

__all__ = [
    "AgentTool",
    "stringify_result",
    "tool",
    "ToolSchemaError",
    "ToolPolicy",
    "wrap_tools_with_policy",
    "normalize_tool_name",
    "READ_LINES_LOCKED",
    "READ_FILE_LOCKED",
    "to_anthropic_tool",
    "to_openai_tool",
    "anthropic_to_openai",
    "openai_to_anthropic",
]
