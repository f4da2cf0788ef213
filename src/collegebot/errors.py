"""Exception taxonomy for the orchestration engine.

Tool-call errors are recoverable: the dispatcher turns them into a
ToolOutcome that goes back into the conversation. A TokenSourceFailure
ends the run; it carries whatever history had accumulated.
"""

from typing import List, Optional


class CollegeBotError(Exception):
    """Base class for engine errors."""


class ToolCallError(CollegeBotError):
    """A tool call that could not be completed. Always recoverable."""


class MalformedToolCall(ToolCallError):
    """A tool region is missing its <name> or <parameters> sub-region."""


class InvalidParameters(ToolCallError):
    """The <parameters> sub-region is not a JSON object."""


class UnknownTool(ToolCallError):
    """The requested tool name is not in the registry."""

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class ToolExecutionFailure(ToolCallError):
    """A tool handler raised or returned no usable content."""

    def __init__(self, tool_name: str, reason: str):
        super().__init__(reason)
        self.tool_name = tool_name


class TokenSourceFailure(CollegeBotError):
    """The model's token stream failed mid-turn.

    `messages` holds the partial history at the moment of failure once the
    driver has attached it.
    """

    def __init__(self, reason: str, messages: Optional[List] = None):
        super().__init__(reason)
        self.messages = messages if messages is not None else []
