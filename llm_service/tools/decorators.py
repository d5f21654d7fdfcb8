"""Decorator that turns a typed function into an :class:`AgentTool`."""
import inspect
import re
import typing
from typing import Any, Callable, Optional, Union, get_args, get_origin, get_type_hints

from .base import AgentTool

_PRIMITIVES: dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    dict: "object",
    list: "array",
}

_ARG_LINE = re.compile(r"^\s*(\*{0,2}\w+)\s*(?:\([^)]*\))?\s*:\s*(.*)$")


class ToolSchemaError(ValueError):
    """A function cannot be described as a tool (missing or unsupported hints)."""


def _json_type(hint: Any) -> dict[str, Any]:
    origin = get_origin(hint)
    if origin is Union:
        args = [a for a in get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return _json_type(args[0])
        return {"anyOf": [_json_type(a) for a in args]}
    if origin is typing.Literal:
        values = list(get_args(hint))
        return {"type": _PRIMITIVES.get(type(values[0]), "string"), "enum": values}
    if origin in (list, tuple, set):
        args = get_args(hint)
        schema: dict[str, Any] = {"type": "array"}
        if args:
            schema["items"] = _json_type(args[0])
        return schema
    if origin is dict:
        return {"type": "object"}
    if hint in _PRIMITIVES:
        return {"type": _PRIMITIVES[hint]}
    if hint is Any:
        return {}
    raise ToolSchemaError(f"Unsupported type hint: {hint!r}")


def _parse_docstring(doc: Optional[str]) -> tuple[str, dict[str, str]]:
    """Split a Google-style docstring into a summary and per-argument descriptions."""
    if not doc:
        return "", {}
    lines = inspect.cleandoc(doc).splitlines()
    summary: list[str] = []
    arg_docs: dict[str, str] = {}
    section = "summary"
    current: Optional[str] = None
    for line in lines:
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            section = "args"
            continue
        if stripped.endswith(":") and stripped[:-1] in ("Returns", "Raises", "Example", "Examples", "Yields", "Note"):
            section = "other"
            continue
        if section == "summary":
            if not stripped and summary:
                section = "description"
            elif stripped:
                summary.append(stripped)
        elif section == "args":
            match = _ARG_LINE.match(line)
            if match and line.startswith((" ", "\t")) and len(line) - len(line.lstrip()) <= 4:
                current = match.group(1).lstrip("*")
                arg_docs[current] = match.group(2).strip()
            elif current and stripped:
                arg_docs[current] = f"{arg_docs[current]} {stripped}".strip()
    return " ".join(summary), arg_docs


def build_parameters_schema(func: Callable) -> dict[str, Any]:
    """JSON schema for the keyword arguments of *func*."""
    try:
        hints = get_type_hints(func)
    except Exception as e:
        raise ToolSchemaError(f"Cannot resolve type hints for '{func.__name__}': {e}") from e
    _, arg_docs = _parse_docstring(func.__doc__)

    properties: dict[str, Any] = {}
    required: list[str] = []
    for name, param in inspect.signature(func).parameters.items():
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        if name not in hints:
            raise ToolSchemaError(f"Parameter '{name}' of '{func.__name__}' has no type hint")
        prop = _json_type(hints[name])
        if name in arg_docs:
            prop["description"] = arg_docs[name]
        properties[name] = prop
        if param.default is inspect.Parameter.empty:
            required.append(name)

    schema: dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def tool(func: Optional[Callable] = None, *, name: Optional[str] = None, description: Optional[str] = None):
    """Build an :class:`AgentTool` from a typed, documented function.

    The function keeps its normal signature; the tool calls it with the
    model's arguments as keyword arguments. Works with ``def`` and
    ``async def``.

    Example:
        >>> @tool
        ... def fs_read_file(path: str) -> str:
        ...     '''Read a whole file.
        ...
        ...     Args:
        ...         path: Workspace-relative path.
        ...     '''
        ...     return open(path).read()
        >>> fs_read_file.parameters["required"]
        ['path']

    Raises:
        ToolSchemaError: If a parameter lacks a supported type hint.
    """

    def decorate(fn: Callable) -> AgentTool:
        summary, _ = _parse_docstring(fn.__doc__)
        parameters = build_parameters_schema(fn)

        def run(arguments: dict[str, Any]) -> Any:
            return fn(**(arguments or {}))

        return AgentTool(
            name=name or fn.__name__,
            description=description or summary or fn.__name__,
            run=run,
            parameters=parameters,
        )

    if func is not None:
        return decorate(func)
    return decorate
