"""
Tool registry and invocation for realtime function calling.
"""

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.realtime_session.errors import ConfigurationError

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass
class ToolResult:
    """Outcome of one tool call: either ``output`` or ``error`` is set."""

    call_id: str
    name: Optional[str]
    output: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_output_item(self) -> Dict[str, Any]:
        """
        Build the ``function_call_output`` item sent back to the peer.
        """
        body = self.output if self.ok else {"error": self.error}
        return {
            "type": "function_call_output",
            "call_id": self.call_id,
            "output": json.dumps(body),
        }


class ToolRegistry:
    """
    Mapping of tool name to ``{"definition": ..., "handler": ...}``.
    """

    def __init__(self) -> None:
        self.tools: Dict[str, Dict[str, Any]] = {}

    def __contains__(self, name: str) -> bool:
        return name in self.tools

    def __len__(self) -> int:
        return len(self.tools)

    def add(self, definition: Dict[str, Any], handler: ToolHandler) -> Dict[str, Any]:
        name = (definition or {}).get("name")
        if not name:
            raise ConfigurationError("Missing tool name in definition")
        if name in self.tools:
            raise ConfigurationError(
                f'Tool "{name}" already added. Please use remove_tool("{name}") before trying to add again.'
            )
        if not callable(handler):
            raise ConfigurationError(f'Tool "{name}" handler must be callable')
        self.tools[name] = {"definition": definition, "handler": handler}
        logger.debug(f"Tool '{name}' registered.")
        return self.tools[name]

    def remove(self, name: str) -> None:
        if name not in self.tools:
            raise ConfigurationError(f'Tool "{name}" does not exist, can not be removed.')
        del self.tools[name]

    def get(self, name: str) -> Optional[Dict[str, Any]]:
        return self.tools.get(name)

    def definitions(self) -> List[Dict[str, Any]]:
        return [tool["definition"] for tool in self.tools.values()]

    def clear(self) -> None:
        self.tools.clear()

    async def invoke(self, tool: Dict[str, Any]) -> ToolResult:
        """
        Run the handler registered for a formatted function call.

        Never raises: unknown tools, malformed arguments and handler failures are
        reported through ``ToolResult.error``.

        Args:
            tool (dict): ``{"name", "call_id", "arguments"}`` from an item's formatted view.
        """
        name = tool.get("name")
        result = ToolResult(call_id=tool.get("call_id"), name=name)
        try:
            json_arguments = json.loads(tool.get("arguments") or "{}")
            tool_config = self.tools.get(name)
            if not tool_config:
                raise LookupError(f'Tool "{name}" has not been added')
            output = tool_config["handler"](json_arguments)
            if inspect.isawaitable(output):
                output = await output
            # Non-serializable results are reported as tool errors.
            json.dumps(output)
            result.output = output
        except Exception as e:
            logger.error(f"Tool '{name}' failed: {e}", exc_info=True)
            result.error = str(e)
        return result
