"""Tool definitions in each vendor's wire format.

Anthropic::

    {"name": ..., "description": ..., "input_schema": {...}}

OpenAI (and OpenAI-compatible endpoints)::

    {"type": "function", "function": {"name": ..., "description": ..., "parameters": {...}}}
"""

import json
from typing import Any

from .base import AgentTool

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


def to_anthropic_tool(tool: AgentTool) -> dict[str, Any]:
    return {
        "name": tool.name,
        "description": tool.description or "",
        "input_schema": tool.parameters or dict(EMPTY_PARAMETERS),
    }


def to_openai_tool(tool: AgentTool) -> dict[str, Any]:
    function_def: dict[str, Any] = {
        "name": tool.name,
        "parameters": tool.parameters or dict(EMPTY_PARAMETERS),
    }
    if tool.description:
        function_def["description"] = tool.description
    return {"type": "function", "function": function_def}


def anthropic_to_openai(schema: dict[str, Any]) -> dict[str, Any]:
    """Convert an Anthropic tool schema dict to OpenAI function format.

    Raises:
        ValueError: If ``name`` is missing.
    """
    if "name" not in schema:
        raise ValueError("Anthropic schema missing required 'name' field")
    function_def: dict[str, Any] = {
        "name": schema["name"],
        "parameters": schema.get("input_schema") or dict(EMPTY_PARAMETERS),
    }
    if "description" in schema:
        function_def["description"] = schema["description"]
    return {"type": "function", "function": function_def}


def openai_to_anthropic(schema: dict[str, Any]) -> dict[str, Any]:
    """Convert an OpenAI function-format dict to an Anthropic tool schema.

    Raises:
        ValueError: If the ``function`` wrapper or its ``name`` is missing.
    """
    function_def = schema.get("function")
    if not isinstance(function_def, dict) or "name" not in function_def:
        raise ValueError("OpenAI schema missing 'function.name'")
    result: dict[str, Any] = {
        "name": function_def["name"],
        "input_schema": function_def.get("parameters") or dict(EMPTY_PARAMETERS),
    }
    if "description" in function_def:
        result["description"] = function_def["description"]
    return result


def tool_definitions_text(tools: list[AgentTool]) -> str:
    """Serialised tool definitions, used to estimate their prompt tokens."""
    return json.dumps([to_anthropic_tool(t) for t in tools], default=str) if tools else ""
