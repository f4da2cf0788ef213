"""Streaming conversation engine for the college-planning assistant."""

from .config import Config
from .driver import ConversationDriver, RunResult, RunState
from .errors import (
    CollegeBotError,
    InvalidParameters,
    MalformedToolCall,
    TokenSourceFailure,
    ToolCallError,
    ToolExecutionFailure,
    UnknownTool,
)
from .events import ConsoleRenderer, Event, EventCollector, EventEmitter, SSEWriter
from .messages import Message, dump_messages, load_messages, to_model_messages
from .tags import TagBuffer, TagRegion, find_complete_tag
from .tool_calls import ToolCall, decode_tool_call
from .token_source import Model, ScriptedModel, ScriptedTokenSource, TokenSource
from .tools import Tool, ToolContext, ToolMetrics, ToolOutcome, ToolRegistry
from .turn import TurnOutcome, TurnProcessor, TurnResult

__version__ = "0.1.0"
__all__ = [
    "CollegeBotError",
    "Config",
    "ConsoleRenderer",
    "ConversationDriver",
    "Event",
    "EventCollector",
    "EventEmitter",
    "InvalidParameters",
    "MalformedToolCall",
    "Message",
    "Model",
    "RunResult",
    "RunState",
    "SSEWriter",
    "ScriptedModel",
    "ScriptedTokenSource",
    "TagBuffer",
    "TagRegion",
    "TokenSource",
    "TokenSourceFailure",
    "Tool",
    "ToolCall",
    "ToolCallError",
    "ToolContext",
    "ToolExecutionFailure",
    "ToolMetrics",
    "ToolOutcome",
    "ToolRegistry",
    "TurnOutcome",
    "TurnProcessor",
    "TurnResult",
    "UnknownTool",
    "decode_tool_call",
    "dump_messages",
    "find_complete_tag",
    "load_messages",
    "to_model_messages",
]
