"""Tool dispatch: decode, resolve, invoke, report.

Every failure (bad markup, bad JSON, unknown name, handler error) becomes a
failed ToolOutcome whose text is fed back to the model so it can correct
itself. Nothing raised by a tool escapes dispatch.
"""

import json
import time
from typing import Optional

from .errors import ToolCallError, UnknownTool
from .events import EventEmitter
from .logger import get_logger, truncate
from .tool_calls import ToolCall, decode_tool_call
from .tools.metrics import ToolMetrics
from .tools.registry import ToolContext, ToolOutcome, ToolRegistry

log = get_logger("dispatcher")


def _pretty_if_json(text: str) -> str:
    try:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
    except (json.JSONDecodeError, TypeError):
        return text


class ToolDispatcher:
    """Turns tool regions into ToolOutcomes using an injected registry."""

    def __init__(
        self,
        registry: ToolRegistry,
        emitter: EventEmitter,
        metrics: Optional[ToolMetrics] = None,
    ):
        self.registry = registry
        self.emitter = emitter
        self.metrics = metrics

    async def dispatch(self, region_content: str, context: ToolContext) -> ToolOutcome:
        """Decode a tool region's content and invoke it."""
        try:
            call = decode_tool_call(region_content)
        except ToolCallError as e:
            log.warning("Tool call decode failed: %s content=%s", e, truncate(region_content))
            await self.emitter.thinking(f"Error parsing tool call: {e}")
            return ToolOutcome(succeeded=False, text=f"Tool call error: {e}")
        return await self.invoke(call, context)

    async def invoke(self, call: ToolCall, context: ToolContext) -> ToolOutcome:
        """Resolve and run an already decoded call."""
        await self.emitter.thinking(f"Using {call.name} tool...", tool_data=call.pretty_parameters())
        log.info("Tool call: %s params=%s", call.name, truncate(json.dumps(call.parameters), 300))

        start = time.time()
        try:
            tool = self.registry.get(call.name)
            if tool is None:
                raise UnknownTool(call.name)
            text = await tool.run(call.parameters, context)
        except ToolCallError as e:
            elapsed_ms = (time.time() - start) * 1000
            self._record(call.name, elapsed_ms, False, context)
            log.warning("Tool %s failed after %.1fms: %s", call.name, elapsed_ms, e)
            await self.emitter.thinking(f"Error executing tool: {e}")
            return ToolOutcome(succeeded=False, text=f"Tool {call.name} error: {e}", tool_name=call.name)

        elapsed_ms = (time.time() - start) * 1000
        self._record(call.name, elapsed_ms, True, context)
        log.info("Tool %s returned %d chars in %.1fms: %s", call.name, len(text), elapsed_ms, truncate(text))
        await self.emitter.thinking(f"Tool {call.name} result:", tool_data=_pretty_if_json(text))
        return ToolOutcome(succeeded=True, text=f"Tool {call.name} returned: {text}", tool_name=call.name)

    def _record(self, tool_name: str, elapsed_ms: float, success: bool, context: ToolContext) -> None:
        if self.metrics is not None:
            self.metrics.record(tool_name, elapsed_ms, success, conversation_id=context.conversation_id)
