"""Conversation driver: run turns until the model is done.

The driver owns the message history of a run. It keeps calling the turn
processor while turns end in CONTINUE, and stops a runaway tool loop with a
step limit: once ``step_limit`` regular turns have run, a directive asking
for a final answer is appended and exactly one more turn is allowed.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .config import DEFAULT_STEP_LIMIT, Config
from .dispatcher import ToolDispatcher
from .errors import TokenSourceFailure
from .events import Event, EventEmitter
from .logger import get_logger
from .messages import ANSWER, USER, Message
from .prompts import step_limit_directive, step_limit_status, with_title_request
from .token_source import Model
from .tools.metrics import ToolMetrics
from .tools.registry import ToolContext, ToolRegistry
from .turn import TurnOutcome, TurnProcessor

log = get_logger("driver")

STOP_DONE = "done"
STOP_STEP_LIMIT = "step_limit"
STOP_TIMEOUT = "timeout"


@dataclass
class RunState:
    messages: List[Message]
    step_limit: int
    step_count: int = 0
    turns: int = 0
    answer_seen: bool = False
    request_title: bool = False
    stop_reason: Optional[str] = None

    @property
    def wants_title(self) -> bool:
        return self.request_title and not self.answer_seen


@dataclass
class RunResult:
    messages: List[Message] = field(default_factory=list)
    turns: int = 0
    step_count: int = 0
    stop_reason: Optional[str] = None


class ConversationDriver:
    """Runs conversations against one model and one tool registry.

    The driver keeps no per-run state, so independent runs may share it.
    """

    def __init__(
        self,
        model: Model,
        registry: ToolRegistry,
        sink: Optional[Callable[[Event], Any]] = None,
        step_limit: int = DEFAULT_STEP_LIMIT,
        early_exit: bool = True,
        metrics: Optional[ToolMetrics] = None,
    ):
        if step_limit < 0:
            raise ValueError("step_limit must be zero or greater")
        self.model = model
        self.registry = registry
        self.step_limit = step_limit
        self.early_exit = early_exit
        self.metrics = metrics if metrics is not None else ToolMetrics()
        self.emitter = EventEmitter(sink)
        self.dispatcher = ToolDispatcher(registry, self.emitter, self.metrics)
        self.turns = TurnProcessor(model, self.dispatcher, self.emitter, early_exit=early_exit)

    @classmethod
    def from_config(
        cls,
        config: Config,
        model: Model,
        registry: ToolRegistry,
        sink: Optional[Callable[[Event], Any]] = None,
        metrics: Optional[ToolMetrics] = None,
    ) -> "ConversationDriver":
        return cls(
            model,
            registry,
            sink=sink,
            step_limit=config.step_limit,
            early_exit=config.early_exit,
            metrics=metrics,
        )

    async def run(
        self,
        initial_messages: List[Message],
        instruction: str,
        context: Optional[ToolContext] = None,
        timeout: Optional[float] = None,
    ) -> RunResult:
        """Run a conversation to completion and return its full history.

        `initial_messages` is copied, never modified. A `complete` event is
        emitted on every exit path. TokenSourceFailure is re-raised with the
        partial history on ``exc.messages``; a timeout returns the partial
        history with ``stop_reason="timeout"``.
        """
        state = RunState(messages=list(initial_messages), step_limit=self.step_limit)
        # A prior answer means the chat already has a title; answer_seen
        # only tracks answers produced by this run.
        state.request_title = not any(m.role == ANSWER for m in state.messages)
        context = context or ToolContext()

        log.info("run START messages=%d step_limit=%d request_title=%s timeout=%s",
                 len(state.messages), state.step_limit, state.request_title, timeout)
        try:
            if timeout is None:
                await self._loop(state, instruction, context)
            else:
                await asyncio.wait_for(self._loop(state, instruction, context), timeout)
        except asyncio.TimeoutError:
            state.stop_reason = STOP_TIMEOUT
            log.warning("Run timed out after %.1fs (turns=%d, messages=%d)",
                        timeout, state.turns, len(state.messages))
            await self.emitter.error(f"Request timed out after {timeout:g} seconds")
        except TokenSourceFailure as e:
            e.messages = list(state.messages)
            log.error("Run aborted by token source failure after %d turns: %s", state.turns, e)
            await self.emitter.error(str(e))
            raise
        finally:
            await self.emitter.complete()

        log.info("run DONE stop_reason=%s turns=%d steps=%d messages=%d",
                 state.stop_reason, state.turns, state.step_count, len(state.messages))
        return RunResult(
            messages=state.messages,
            turns=state.turns,
            step_count=state.step_count,
            stop_reason=state.stop_reason,
        )

    async def _loop(self, state: RunState, instruction: str, context: ToolContext) -> None:
        while True:
            forced = state.step_count >= state.step_limit
            if forced:
                log.warning("Step limit reached (%d), requesting final answer", state.step_limit)
                state.messages.append(Message(USER, step_limit_directive(state.step_limit)))
                await self.emitter.status(step_limit_status(state.step_limit))

            turn_instruction = with_title_request(instruction) if state.wants_title else instruction
            result = await self.turns.process(
                state.messages,
                turn_instruction,
                context,
                request_title=state.wants_title,
                answer_seen=state.answer_seen,
            )
            state.turns += 1
            if result.answered:
                state.answer_seen = True

            if forced:
                state.stop_reason = STOP_STEP_LIMIT
                return
            state.step_count += 1
            if result.outcome is TurnOutcome.DONE:
                state.stop_reason = STOP_DONE
                return
            log.debug("turn %d continues (step %d/%d)", state.turns, state.step_count, state.step_limit)
