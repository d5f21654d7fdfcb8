"""Per-request invocation policies for caller-supplied tools.

:func:`wrap_tools_with_policy` returns tools that look exactly like the
originals to the model and the adapter, but enforce de-duplication and call
caps for the read and search tools that multi-step tool loops tend to call
over and over. All caches and counters live in the closure of one
``wrap_tools_with_policy`` call, so they never leak across requests.
"""
import base64
import binascii
import json
import re
from dataclasses import dataclass, replace
from typing import Any, Optional

from ..logging import get_logger
from .base import AgentTool

logger = get_logger(__name__)

READ_LINES_LOCKED = "Error: read_locked: read limit reached for this range"
READ_FILE_LOCKED = "Error: read_locked: fsReadFile per-file read limit reached"

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


@dataclass
class ToolPolicy:
    """Which policies apply.

    Attributes:
        dedupe_read_lines: Serve repeated identical range reads from cache.
        max_read_lines_per_range: Cap on live reads of one exact range signature.
        dedupe_read_file: Serve repeated whole-file reads from cache.
        max_read_file_per_file: Cap on live whole-file reads per path.
        dedupe_search: Serve repeated identical workspace searches from cache.
    """
    dedupe_read_lines: bool = False
    max_read_lines_per_range: Optional[int] = None
    dedupe_read_file: bool = False
    max_read_file_per_file: Optional[int] = None
    dedupe_search: bool = True


def normalize_tool_name(name: str) -> str:
    """``fs.read_lines`` and ``fsReadLines`` both become ``fsreadlines``."""
    return _NON_ALNUM.sub("", name or "").lower()


def _key(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _decode_handle(handle: Any) -> Optional[dict[str, Any]]:
    """Decode a base64-encoded JSON read handle (``{"p": path, "s": .., "e": ..}``)."""
    if not handle:
        return None
    try:
        decoded = json.loads(base64.b64decode(str(handle)).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return decoded if isinstance(decoded, dict) else None


def _read_lines_signature(tool_name: str, args: dict[str, Any]) -> str:
    handle = _decode_handle(args.get("handle"))
    path = args.get("path") or (handle or {}).get("p") or ""
    return _key({
        "tool": tool_name,
        "path": path,
        "handle": bool(args.get("handle")),
        "mode": args.get("mode") or "range",
        "start": args.get("startLine", args.get("start_line")),
        "end": args.get("endLine", args.get("end_line")),
        "focus": args.get("focusLine", args.get("focus_line")),
        "window": args.get("window"),
        "before": args.get("beforeLines", args.get("before_lines")),
        "after": args.get("afterLines", args.get("after_lines")),
    })


def wrap_tools_with_policy(tools: list[AgentTool], policy: Optional[ToolPolicy] = None) -> list[AgentTool]:
    """Return policy-enforcing copies of *tools*.

    Tools other than workspace search, ranged reads and whole-file reads are
    returned unchanged.

    Example:
        >>> wrapped = wrap_tools_with_policy(tools, ToolPolicy(max_read_lines_per_range=1))
    """
    policy = policy or ToolPolicy()

    search_cache: dict[str, Any] = {}
    read_lines_cache: dict[str, Any] = {}
    read_lines_counts: dict[str, int] = {}
    read_file_cache: dict[str, Any] = {}
    read_file_counts: dict[str, int] = {}

    def wrap_search(tool: AgentTool) -> AgentTool:
        async def run(args: dict[str, Any]) -> Any:
            args = dict(args or {})
            key = _key(args)
            if key in search_cache:
                logger.debug("Search served from cache", tool=tool.name)
                return search_cache[key]
            result = await tool.invoke(args)
            search_cache[key] = result
            return result

        return replace(tool, run=run)

    def wrap_read_lines(tool: AgentTool) -> AgentTool:
        async def run(args: dict[str, Any]) -> Any:
            args = args or {}
            signature = _read_lines_signature(tool.name, args)

            cap = policy.max_read_lines_per_range
            if cap is not None and read_lines_counts.get(signature, 0) >= cap:
                logger.info("Read locked", tool=tool.name, cap=cap)
                return READ_LINES_LOCKED

            if policy.dedupe_read_lines and signature in read_lines_cache:
                logger.debug("Read served from cache", tool=tool.name)
                return read_lines_cache[signature]

            result = await tool.invoke(args)

            if cap is not None:
                read_lines_counts[signature] = read_lines_counts.get(signature, 0) + 1
            read_lines_cache[signature] = result
            return result

        return replace(tool, run=run)

    def wrap_read_file(tool: AgentTool) -> AgentTool:
        async def run(args: dict[str, Any]) -> Any:
            args = args or {}
            path = args.get("path") or ""

            cap = policy.max_read_file_per_file
            if cap is not None and path and read_file_counts.get(path, 0) >= cap:
                logger.info("Read locked", tool=tool.name, cap=cap)
                return READ_FILE_LOCKED

            key = _key({"tool": tool.name, "path": path})
            if policy.dedupe_read_file and key in read_file_cache:
                logger.debug("Read served from cache", tool=tool.name)
                return read_file_cache[key]

            result = await tool.invoke(args)

            if cap is not None and path:
                read_file_counts[path] = read_file_counts.get(path, 0) + 1
            read_file_cache[key] = result
            return result

        return replace(tool, run=run)

    wrapped: list[AgentTool] = []
    for tool in tools or []:
        normalized = normalize_tool_name(tool.name)
        if normalized == "workspacesearch" and policy.dedupe_search:
            wrapped.append(wrap_search(tool))
        elif normalized == "fsreadlines":
            wrapped.append(wrap_read_lines(tool))
        elif normalized == "fsreadfile":
            wrapped.append(wrap_read_file(tool))
        else:
            wrapped.append(tool)
    return wrapped
