"""Fixed directives the engine adds to a conversation."""

import json
from typing import Any, Dict

# Appended to the system instruction until the run has produced an answer.
TITLE_REQUEST = (
    "\n\nAfter providing your answer, suggest a brief, descriptive title for this chat "
    "based on the discussion. Format it as: <title>Your suggested title</title>"
)


def with_title_request(instruction: str) -> str:
    return f"{instruction}{TITLE_REQUEST}"


def step_limit_directive(limit: int) -> str:
    """User message injected when the run reaches its step limit."""
    return (
        f"You have reached the maximum number of steps ({limit}). "
        "Do not call any more tools. Provide your final answer now inside <answer></answer> tags, "
        "based on the information you already have."
    )


def step_limit_status(limit: int) -> str:
    return f"Reached the maximum of {limit} steps, requesting a final answer..."


ANALYSIS_REQUEST = "Please process this chat according to the instructions. Here is the chat content:\n"


def analysis_request(chat: Dict[str, Any]) -> str:
    """Final user message of a chat re-analysis run."""
    return ANALYSIS_REQUEST + json.dumps(chat, indent=2, ensure_ascii=False)
