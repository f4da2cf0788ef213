"""Tool registry for the handlers the model may call."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from pydantic import BaseModel
import inspect
import json

from ..errors import ToolExecutionFailure


class ToolOutcome(BaseModel):
    """Result of one tool call, success or failure.

    `text` is exactly the content of the user message fed back to the model.
    """

    succeeded: bool
    text: str
    tool_name: Optional[str] = None


@dataclass
class ToolContext:
    """Ambient context handed to every handler (who is asking, in which chat)."""

    user_id: Optional[str] = None
    conversation_id: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)


def _normalize_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=2, default=str, ensure_ascii=False)


@dataclass
class Tool:
    """A handler the model can call by name.

    The handler receives ``(parameters, context)`` and may be sync or async.
    """

    name: str
    handler: Callable
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    required_params: List[str] = field(default_factory=list)

    def describe(self) -> str:
        """One-line description used in system instructions."""
        params = ", ".join(
            f"{p}{'' if p in self.required_params else '?'}" for p in self.parameters
        )
        line = f"- {self.name}({params})"
        return f"{line}: {self.description}" if self.description else line

    async def run(self, parameters: Dict[str, Any], context: ToolContext) -> str:
        """Invoke the handler and return its result as text.

        Raises ToolExecutionFailure when the handler raises or returns
        nothing usable.
        """
        try:
            result = self.handler(parameters, context)
            if inspect.isawaitable(result):
                result = await result
        except ToolExecutionFailure:
            raise
        except Exception as e:
            raise ToolExecutionFailure(self.name, f"{type(e).__name__}: {e}") from e

        if result is None or result == "":
            raise ToolExecutionFailure(self.name, "No content returned from tool")
        return _normalize_result(result)


class ToolRegistry:
    """Registry of available tools. Built once, then read-only for a run."""

    def __init__(self, tools: Optional[List[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def register_function(
        self,
        name: str,
        description: str = "",
        parameters: Dict[str, Any] = None,
        required: List[str] = None,
    ) -> Callable:
        """Decorator to register a function as a tool."""
        def decorator(func: Callable) -> Callable:
            tool = Tool(
                name=name,
                handler=func,
                description=description,
                parameters=parameters or {},
                required_params=required or [],
            )
            self.register(tool)
            return func
        return decorator

    def get(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self._tools.get(name)

    def list_tools(self) -> List[Tool]:
        """List all registered tools."""
        return list(self._tools.values())

    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def describe(self) -> str:
        """Tool listing suitable for appending to a system instruction."""
        return "\n".join(tool.describe() for tool in self._tools.values())
