"""Event channel from the engine to whoever is watching a run.

Events are pushed, in order, to a single sink. The sink is write-only from
the engine's point of view: nothing it does (including raising) can change
the conversation.
"""

import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from .logger import get_logger, log_exception, truncate

log = get_logger("events")

THINKING = "thinking"
RESPONSE = "response"
ERROR = "error"
STATUS = "status"
COMPLETE = "complete"

EVENT_TYPES = (THINKING, RESPONSE, ERROR, STATUS, COMPLETE)

# snake_case attribute -> wire key
_WIRE_KEYS = {
    "suggested_title": "suggestedTitle",
    "tool_data": "toolData",
    "research_tasks": "researchTasks",
    "progress": "progress",
    "total": "total",
    "chat_title": "chatTitle",
}


@dataclass
class Event:
    type: str
    content: str = ""
    suggested_title: Optional[str] = None
    tool_data: Optional[str] = None
    research_tasks: Optional[List[Dict[str, Any]]] = None
    progress: Optional[int] = None
    total: Optional[int] = None
    chat_title: Optional[str] = None

    def __post_init__(self):
        if self.type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {self.type!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: camelCase keys, absent fields omitted."""
        data: Dict[str, Any] = {"type": self.type, "content": self.content}
        for attr, key in _WIRE_KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                data[key] = value
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


class EventEmitter:
    """Ordered, write-only channel in front of a sink.

    The sink may be a plain callable or a coroutine function. Without a sink
    events are only logged.
    """

    def __init__(self, sink: Optional[Callable[[Event], Any]] = None):
        self._sink = sink

    async def emit(self, event: Event) -> None:
        log.debug("event %s: %s", event.type, truncate(event.content, 120))
        if self._sink is None:
            return
        try:
            result = self._sink(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_exception(log, f"Event sink failed on {event.type} event", e)

    async def thinking(self, content: str, tool_data: Optional[str] = None) -> None:
        await self.emit(Event(THINKING, content, tool_data=tool_data))

    async def response(
        self,
        content: str,
        suggested_title: Optional[str] = None,
        research_tasks: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        await self.emit(Event(
            RESPONSE, content,
            suggested_title=suggested_title,
            research_tasks=research_tasks or None,
        ))

    async def error(self, content: str) -> None:
        await self.emit(Event(ERROR, content))

    async def status(
        self,
        content: str,
        progress: Optional[int] = None,
        total: Optional[int] = None,
        chat_title: Optional[str] = None,
    ) -> None:
        await self.emit(Event(STATUS, content, progress=progress, total=total, chat_title=chat_title))

    async def complete(self, content: str = "") -> None:
        await self.emit(Event(COMPLETE, content))


# ── Sinks ────────────────────────────────────────────────────────

@dataclass
class EventCollector:
    """Keeps every event in memory."""

    events: List[Event] = field(default_factory=list)

    def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e.type == event_type]

    @property
    def types(self) -> List[str]:
        return [e.type for e in self.events]


class SSEWriter:
    """Frames events as server-sent events onto a text stream.

    `write` is any callable taking a string (``sys.stdout.write``, a
    response's ``write``, ``list.append``...).
    """

    def __init__(self, write: Callable[[str], Any]):
        self._write = write

    @staticmethod
    def frame(event: Event) -> str:
        return f"data: {event.to_json()}\n\n"

    async def __call__(self, event: Event) -> None:
        result = self._write(self.frame(event))
        if inspect.isawaitable(result):
            await result


class ConsoleRenderer:
    """Renders events to the terminal with rich."""

    def __init__(self, console: Optional[Console] = None, show_thinking: bool = True):
        self.console = console or Console()
        self.show_thinking = show_thinking

    def __call__(self, event: Event) -> None:
        if event.type == THINKING:
            if not self.show_thinking:
                return
            self.console.print(Text(event.content, style="dim"))
            if event.tool_data:
                self.console.print(Syntax(event.tool_data, "json", theme="ansi_dark", word_wrap=True))
        elif event.type == RESPONSE:
            title = event.suggested_title or "Response"
            self.console.print(Panel(Markdown(event.content), title=title, border_style="green"))
            for task in event.research_tasks or []:
                self.console.print(Text(
                    f"Research task: {task.get('type')} {task.get('name')} "
                    f"({len(task.get('findings', []))} findings)",
                    style="cyan",
                ))
        elif event.type == ERROR:
            self.console.print(Text(f"Error: {event.content}", style="red"))
        elif event.type == STATUS:
            prefix = ""
            if event.progress is not None and event.total is not None:
                prefix = f"[{event.progress}/{event.total}] "
            self.console.print(Text(f"{prefix}{event.content}", style="yellow"))
        elif event.type == COMPLETE:
            self.console.print("[dim]Done.[/dim]")
