"""Tool registry, handler context and call metrics."""

from .metrics import ToolMetrics
from .registry import Tool, ToolContext, ToolOutcome, ToolRegistry

__all__ = [
    "Tool",
    "ToolContext",
    "ToolMetrics",
    "ToolOutcome",
    "ToolRegistry",
]
