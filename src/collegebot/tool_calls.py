"""Decode the content of a <tool> region into a ToolCall.

A tool region looks like::

    <tool>
      <name>search_colleges</name>
      <parameters>{"state": "CA", "major": "biology"}</parameters>
    </tool>

The name is not checked against any registry here; resolving it is the
dispatcher's job.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict

from .errors import InvalidParameters, MalformedToolCall

_NAME_RE = re.compile(r"<name>(.*?)</name>", re.DOTALL)
_PARAMS_RE = re.compile(r"<parameters>([\s\S]*?)</parameters>")


@dataclass
class ToolCall:
    name: str
    parameters: Dict[str, Any] = field(default_factory=dict)

    def pretty_parameters(self) -> str:
        return json.dumps(self.parameters, indent=2, ensure_ascii=False)


def decode_tool_call(content: str) -> ToolCall:
    """Parse tool region content.

    Raises MalformedToolCall when <name> or <parameters> is missing (or the
    name is blank) and InvalidParameters when the parameters are not a JSON
    object.
    """
    name_match = _NAME_RE.search(content)
    params_match = _PARAMS_RE.search(content)
    if not name_match or not params_match:
        raise MalformedToolCall("Malformed tool call - missing name or parameters")

    name = name_match.group(1).strip()
    if not name:
        raise MalformedToolCall("Malformed tool call - missing name or parameters")

    raw = params_match.group(1).strip()
    if not raw:
        raise InvalidParameters("Invalid parameters - expected a JSON object, got nothing")
    try:
        parameters = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidParameters(f"Invalid parameters JSON: {e.msg} at line {e.lineno} column {e.colno}") from e
    if not isinstance(parameters, dict):
        raise InvalidParameters(
            f"Invalid parameters - expected a JSON object, got {type(parameters).__name__}"
        )

    return ToolCall(name=name, parameters=parameters)
