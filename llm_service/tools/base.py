"""Tool definition shared by every provider adapter."""
import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

ToolResult = Any
ToolRun = Callable[[dict[str, Any]], Union[ToolResult, Awaitable[ToolResult]]]


@dataclass
class AgentTool:
    """A caller-supplied tool.

    Attributes:
        name: Tool name as shown to the model.
        description: What the tool does.
        parameters: JSON schema for the arguments object.
        run: Called with the parsed arguments dict. May be sync or async and
            may return a string or any JSON-serialisable value.
    """
    name: str
    description: str
    run: ToolRun
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    async def invoke(self, arguments: dict[str, Any]) -> ToolResult:
        """Run the tool and await the result if ``run`` is a coroutine function."""
        result = self.run(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


def stringify_result(result: ToolResult) -> str:
    """Render a tool result as the text sent back to the model."""
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)
