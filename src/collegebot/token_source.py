"""Token source protocol and an in-memory scripted implementation.

A Model opens one TokenSource per turn. The source is an async iterable of
text chunks; it ends when the model finishes the message. Sources that can
stop generation early declare ``cancellable = True`` and release their
resources in ``aclose()``.
"""

import asyncio
from typing import AsyncIterator, List, Protocol, Sequence, Union, runtime_checkable

from .messages import Message
from .logger import get_logger

log = get_logger("token_source")


@runtime_checkable
class TokenSource(Protocol):
    cancellable: bool

    def __aiter__(self) -> AsyncIterator[str]:
        ...

    async def aclose(self) -> None:
        ...


@runtime_checkable
class Model(Protocol):
    async def open_stream(self, messages: List[Message], instruction: str) -> TokenSource:
        ...


# A scripted turn: plain text, or a list of chunks in which an exception
# instance is raised at that point of the stream.
ScriptedTurn = Union[str, Sequence[Union[str, BaseException]]]


class ScriptedTokenSource:
    """Replays a fixed list of chunks."""

    def __init__(self, chunks: ScriptedTurn, cancellable: bool = True, delay: float = 0.0):
        self._chunks = [chunks] if isinstance(chunks, str) else list(chunks)
        self.cancellable = cancellable
        self.delay = delay
        self.delivered = 0
        self.closed = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[str]:
        for chunk in self._chunks:
            if self.closed:
                return
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(chunk, BaseException):
                raise chunk
            self.delivered += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True

    @property
    def exhausted(self) -> bool:
        return self.delivered == len(self._chunks)


class ScriptedModel:
    """A Model that answers each turn from a script.

    Every call to open_stream consumes the next scripted turn; with
    ``repeat_last`` the final turn is replayed forever. The messages and
    instruction of every call are recorded in ``calls``.
    """

    def __init__(
        self,
        turns: Sequence[ScriptedTurn],
        cancellable: bool = True,
        repeat_last: bool = False,
        delay: float = 0.0,
    ):
        self.turns = list(turns)
        self.cancellable = cancellable
        self.repeat_last = repeat_last
        self.delay = delay
        self.calls: List[dict] = []
        self.sources: List[ScriptedTokenSource] = []

    async def open_stream(self, messages: List[Message], instruction: str) -> ScriptedTokenSource:
        index = len(self.calls)
        self.calls.append({"messages": list(messages), "instruction": instruction})
        if index >= len(self.turns):
            if not (self.repeat_last and self.turns):
                raise RuntimeError(f"Scripted model has no turn #{index + 1}")
            index = len(self.turns) - 1
        log.debug("scripted turn #%d", len(self.calls))
        source = ScriptedTokenSource(self.turns[index], cancellable=self.cancellable, delay=self.delay)
        self.sources.append(source)
        return source

    @property
    def instructions(self) -> List[str]:
        return [c["instruction"] for c in self.calls]


def load_script(data: Union[list, dict]) -> List[ScriptedTurn]:
    """Turns from a JSON script: a list of strings or chunk lists, or {"turns": [...]}."""
    if isinstance(data, dict):
        data = data.get("turns", [])
    turns: List[ScriptedTurn] = []
    for turn in data:
        if isinstance(turn, str):
            turns.append(turn)
        elif isinstance(turn, list) and all(isinstance(c, str) for c in turn):
            turns.append(list(turn))
        else:
            raise ValueError(f"Invalid scripted turn: {turn!r}")
    return turns


__all__ = [
    "Model",
    "ScriptedModel",
    "ScriptedTokenSource",
    "TokenSource",
    "load_script",
]
