"""One model invocation: stream, reveal tagged regions, dispatch tools.

A turn moves Streaming -> (ToolDetected | MessageEnd) -> Finalizing and ends
as CONTINUE (tool results were fed back, the model must run again) or DONE.

While streaming, complete <thinking>, <answer> and <title> regions are
pulled out of the buffer in source order and surfaced at once. Tool regions are left in the
buffer until finalization. With early exit on and a cancellable source the
stream is closed as soon as one complete tool region is present; otherwise
the whole message is read first.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .dispatcher import ToolDispatcher
from .errors import TokenSourceFailure
from .events import EventEmitter
from .logger import get_logger, log_exception, truncate
from .messages import ANSWER, QUESTION, USER, Message
from .research import research_task_dicts
from .tags import ANSWER as ANSWER_TAG
from .tags import TAG_KINDS, THINKING, TITLE, TOOL, TagBuffer
from .token_source import Model, TokenSource
from .tools.registry import ToolContext, ToolOutcome

log = get_logger("turn")

# Tool regions stay in the buffer until finalization.
REVEALED_KINDS = (THINKING, ANSWER_TAG, TITLE)


class TurnOutcome(Enum):
    CONTINUE = "continue"
    DONE = "done"


@dataclass
class TurnResult:
    outcome: TurnOutcome
    messages: List[Message] = field(default_factory=list)   # appended to history this turn
    had_tool_call: bool = False
    answered: bool = False                                  # explicit <answer> captured
    tool_outcomes: List[ToolOutcome] = field(default_factory=list)
    transcript: str = ""                                    # raw model text received
    stopped_early: bool = False


class _TitleState:
    """Pairs the first answer of a title-requesting turn with its title.

    Answers are held (in order) until the title shows up or the stream ends;
    a title that arrives first waits for the answer.
    """

    def __init__(self, requested: bool):
        self.requested = requested
        self.delivered = False
        self.title: Optional[str] = None
        self.held: List[Tuple[str, list]] = []

    @property
    def waiting(self) -> bool:
        return self.requested and not self.delivered

    def take_title(self) -> Optional[str]:
        if not self.waiting or self.title is None:
            return None
        self.delivered = True
        title, self.title = self.title, None
        return title


class TurnProcessor:
    """Runs single turns against a Model, appending to a shared history."""

    def __init__(
        self,
        model: Model,
        dispatcher: ToolDispatcher,
        emitter: EventEmitter,
        early_exit: bool = True,
    ):
        self.model = model
        self.dispatcher = dispatcher
        self.emitter = emitter
        self.early_exit = early_exit

    async def process(
        self,
        history: List[Message],
        instruction: str,
        context: Optional[ToolContext] = None,
        request_title: bool = False,
        answer_seen: bool = False,
    ) -> TurnResult:
        """Run one turn. Messages are appended to `history` as they happen.

        Raises TokenSourceFailure if the model stream cannot be opened or
        fails mid-stream; anything appended before that stays in `history`.
        """
        context = context or ToolContext()
        result = TurnResult(outcome=TurnOutcome.DONE)
        titles = _TitleState(request_title)
        buffer = TagBuffer()
        received: List[str] = []

        log.info("turn START history=%d request_title=%s answer_seen=%s early_exit=%s",
                 len(history), request_title, answer_seen, self.early_exit)

        try:
            source = await self.model.open_stream(list(history), instruction)
        except (asyncio.CancelledError, TokenSourceFailure):
            raise
        except Exception as e:
            log_exception(log, "Failed to open token stream", e)
            raise TokenSourceFailure(f"Failed to open model stream: {e}") from e

        early_exit = self.early_exit and bool(getattr(source, "cancellable", False))
        try:
            async for chunk in source:
                if not chunk:
                    continue
                buffer.append(chunk)
                received.append(chunk)
                await self._reveal(buffer, history, result, titles)
                if early_exit and buffer.find(TOOL) is not None:
                    log.info("Complete tool region detected mid-stream, closing stream")
                    result.stopped_early = True
                    break
        except asyncio.CancelledError:
            log.info("Turn cancelled mid-stream, flushing %d held answers", len(titles.held))
            await self._flush_held(titles)
            raise
        except Exception as e:
            log_exception(log, "Token stream failed mid-turn", e)
            await self._flush_held(titles)
            if isinstance(e, TokenSourceFailure):
                raise
            raise TokenSourceFailure(f"Model stream failed: {e}") from e
        finally:
            await self._close(source)
            result.transcript = "".join(received)

        log.debug("turn stream END chars=%d stopped_early=%s remaining=%s",
                  len(result.transcript), result.stopped_early, truncate(buffer.text))

        for kind in TAG_KINDS:
            if buffer.has_unclosed(kind):
                log.warning("Stream ended inside an unclosed <%s> tag", kind)
        await self._reveal(buffer, history, result, titles, strict=False)
        await self._flush_held(titles)
        await self._finalize(buffer, history, result, titles, context, answer_seen)

        log.info("turn DONE outcome=%s tools=%d answered=%s appended=%d",
                 result.outcome.value, len(result.tool_outcomes), result.answered, len(result.messages))
        return result

    # ── Streaming ────────────────────────────────────────────────

    async def _reveal(self, buffer: TagBuffer, history: List[Message],
                      result: TurnResult, titles: _TitleState, strict: bool = True) -> None:
        """Surface complete thinking, answer and title regions in source order.

        A region nested inside another (an answer inside thinking) goes out
        as part of the outer one. With ``strict=False``, used once the
        stream has ended, unclosed opening tags no longer hold back the
        regions after them.
        """
        while True:
            region = buffer.pop_next(REVEALED_KINDS, strict=strict)
            if region is None:
                return
            if not region.content:
                continue
            if region.kind == THINKING:
                await self.emitter.thinking(region.content)
            elif region.kind == ANSWER_TAG:
                await self._reveal_answer(region.content, history, result, titles)
            else:
                await self._reveal_title(region.content, titles)

    async def _reveal_answer(self, content: str, history: List[Message],
                             result: TurnResult, titles: _TitleState) -> None:
        self._append(history, result, Message(ANSWER, content))
        result.answered = True
        tasks = research_task_dicts(content)
        if not titles.waiting:
            await self.emitter.response(content, research_tasks=tasks)
            return
        title = titles.take_title()
        if title is not None:
            await self.emitter.response(content, suggested_title=title, research_tasks=tasks)
        else:
            titles.held.append((content, tasks))

    async def _reveal_title(self, content: str, titles: _TitleState) -> None:
        if not titles.waiting:
            log.debug("Ignoring unrequested title: %s", truncate(content, 80))
            return
        titles.title = content
        if titles.held:
            await self._flush_held(titles)

    async def _flush_held(self, titles: _TitleState) -> None:
        """Emit held answers, the first one carrying the title if there is one."""
        held, titles.held = titles.held, []
        for index, (content, tasks) in enumerate(held):
            title = titles.take_title() if index == 0 else None
            await self.emitter.response(content, suggested_title=title, research_tasks=tasks)

    # ── Finalizing ───────────────────────────────────────────────

    async def _finalize(self, buffer: TagBuffer, history: List[Message], result: TurnResult,
                        titles: _TitleState, context: ToolContext, answer_seen: bool) -> None:
        if buffer.is_blank():
            result.outcome = TurnOutcome.DONE
            return

        regions = buffer.drain(TOOL)
        for index, region in enumerate(regions, 1):
            log.info("Tool exec START (%d/%d)", index, len(regions))
            outcome = await self.dispatcher.dispatch(region.content, context)
            result.tool_outcomes.append(outcome)
            self._append(history, result, Message(USER, outcome.text))
            log.info("Tool exec DONE (%d/%d) succeeded=%s", index, len(regions), outcome.succeeded)

        result.had_tool_call = bool(regions)
        leftover = buffer.text.strip()

        if result.had_tool_call:
            if leftover:
                log.debug("Discarding prose around tool calls: %s", truncate(leftover))
            result.outcome = TurnOutcome.DONE if result.answered else TurnOutcome.CONTINUE
            return

        result.outcome = TurnOutcome.DONE
        if not leftover:
            return
        if result.answered:
            log.info("Discarding leftover text alongside answer: %s", truncate(leftover))
            return

        role = ANSWER if answer_seen else QUESTION
        log.info("No answer tag, saving leftover text as %s (%d chars)", role, len(leftover))
        self._append(history, result, Message(role, leftover))
        await self.emitter.response(
            leftover,
            suggested_title=titles.take_title(),
            research_tasks=research_task_dicts(leftover),
        )

    # ── Helpers ──────────────────────────────────────────────────

    @staticmethod
    def _append(history: List[Message], result: TurnResult, message: Message) -> None:
        history.append(message)
        result.messages.append(message)

    @staticmethod
    async def _close(source: TokenSource) -> None:
        aclose = getattr(source, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            log_exception(log, "Error closing token stream", e)
