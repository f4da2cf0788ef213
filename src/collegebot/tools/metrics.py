"""Observability for tool execution.

One ToolMetrics instance is created by whoever builds the driver and shared
by every run that should be counted together; there is no module-level
instance. Calls are counted per tool and per conversation, so a batch of
chat analyses can report which chats leaned on tools the most.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Optional
import threading

from ..logger import get_logger

log = get_logger("metrics")


@dataclass
class ToolStats:
    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0

    def add(self, elapsed_ms: float, success: bool) -> None:
        self.calls += 1
        self.total_ms += elapsed_ms
        self.slowest_ms = max(self.slowest_ms, elapsed_ms)
        if not success:
            self.failures += 1

    def as_dict(self) -> Dict[str, Any]:
        return {
            "calls": self.calls,
            "failures": self.failures,
            "avg_ms": round(self.total_ms / self.calls, 1) if self.calls else 0.0,
            "slowest_ms": round(self.slowest_ms, 1),
        }


class ToolMetrics:
    """Thread-safe tool call counts, keyed by tool and by conversation."""

    def __init__(self):
        self._lock = threading.Lock()
        self._per_tool: Dict[str, ToolStats] = {}
        self._per_conversation: Counter = Counter()

    def record(self, tool_name: str, elapsed_ms: float, success: bool,
               conversation_id: Optional[str] = None) -> None:
        with self._lock:
            self._per_tool.setdefault(tool_name, ToolStats()).add(elapsed_ms, success)
            if conversation_id is not None:
                self._per_conversation[conversation_id] += 1
        log.debug("tool_metric: %s conversation=%s elapsed=%.1fms success=%s",
                  tool_name, conversation_id, elapsed_ms, success)

    def count(self, tool_name: Optional[str] = None, conversation_id: Optional[str] = None) -> int:
        """Number of recorded calls for one tool, one conversation, or in total."""
        with self._lock:
            if conversation_id is not None:
                return self._per_conversation[conversation_id]
            if tool_name is not None:
                stats = self._per_tool.get(tool_name)
                return stats.calls if stats else 0
            return sum(s.calls for s in self._per_tool.values())

    def summary(self) -> Dict[str, Any]:
        """Totals plus per-tool and per-conversation breakdowns, JSON-ready."""
        with self._lock:
            return {
                "calls": sum(s.calls for s in self._per_tool.values()),
                "failures": sum(s.failures for s in self._per_tool.values()),
                "tools": {name: s.as_dict() for name, s in self._per_tool.items()},
                "conversations": dict(self._per_conversation),
            }
