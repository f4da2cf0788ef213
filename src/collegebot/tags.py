"""Tag scanner for lightweight XML-style regions in streamed model text.

The model interleaves prose with regions like ``<thinking>…</thinking>``,
``<answer>…</answer>``, ``<title>…</title>`` and ``<tool>…</tool>``. A
region is only reported once both its opening and closing tag are in the
buffer, so a pair split across stream chunks is picked up on the chunk that
completes it.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

THINKING = "thinking"
ANSWER = "answer"
TITLE = "title"
TOOL = "tool"

TAG_KINDS = (THINKING, ANSWER, TITLE, TOOL)


@dataclass(frozen=True)
class TagRegion:
    """A complete ``<kind>…</kind>`` region found in a buffer."""
    kind: str
    content: str   # trimmed inner text
    span: str      # exact matched text, tags included
    start: int     # offset of the opening tag in the scanned text

    @property
    def end(self) -> int:
        return self.start + len(self.span)


def _locate(kind: str, text: str, start: int = 0) -> Optional[TagRegion]:
    """First opening tag at or after `start`, paired with the first closing tag after it."""
    open_tag = f"<{kind}>"
    close_tag = f"</{kind}>"
    open_pos = text.find(open_tag, start)
    if open_pos == -1:
        return None
    close_pos = text.find(close_tag, open_pos + len(open_tag))
    if close_pos == -1:
        return None
    inner = text[open_pos + len(open_tag):close_pos]
    return TagRegion(
        kind=kind,
        content=inner.strip(),
        span=text[open_pos:close_pos + len(close_tag)],
        start=open_pos,
    )


def find_complete_tag(kind: str, text: str) -> Optional[TagRegion]:
    """Return the first complete, non-empty `kind` region in `text`.

    Regions whose content is empty or whitespace are never returned.
    """
    pos = 0
    while True:
        region = _locate(kind, text, pos)
        if region is None:
            return None
        if region.content:
            return region
        pos = region.end


def has_unclosed_tag(kind: str, text: str) -> bool:
    """True when an opening `kind` tag has no closing tag after it."""
    open_tag = f"<{kind}>"
    close_tag = f"</{kind}>"
    last_open = text.rfind(open_tag)
    if last_open == -1:
        return False
    return text.find(close_tag, last_open + len(open_tag)) == -1


class TagBuffer:
    """Append-only accumulation of streamed text with region extraction.

    One buffer lives for exactly one turn. Callers append chunks, then
    pop or drain the kinds they want revealed; removed spans are cut out so
    the remainder is whatever prose (and incomplete tags) is left.
    """

    def __init__(self, text: str = ""):
        self._text = text

    @property
    def text(self) -> str:
        return self._text

    def __len__(self) -> int:
        return len(self._text)

    def append(self, chunk: str) -> None:
        self._text += chunk

    def find(self, kind: str) -> Optional[TagRegion]:
        """First complete non-empty region of `kind`, without removing it."""
        return find_complete_tag(kind, self._text)

    def pop_next(self, kinds: Sequence[str], strict: bool = True) -> Optional[TagRegion]:
        """Remove and return the earliest complete region among `kinds`.

        In strict mode nothing is returned while an earlier opening tag of
        one of `kinds` is still unclosed, so a region nested inside another
        is never revealed on its own, however the text was chunked. Empty
        regions are removed and returned like any other.
        """
        best = None
        blocked_at = None
        for kind in kinds:
            region = _locate(kind, self._text)
            if region is None:
                pos = self._text.find(f"<{kind}>")
                if pos != -1 and (blocked_at is None or pos < blocked_at):
                    blocked_at = pos
            elif best is None or region.start < best.start:
                best = region
        if best is None:
            return None
        if strict and blocked_at is not None and blocked_at < best.start:
            return None
        self._text = self._text[:best.start] + self._text[best.end:]
        return best

    def drain(self, kind: str) -> List[TagRegion]:
        """Remove and return every complete region of `kind` in source order.

        Empty regions are dropped from the buffer but not returned.
        """
        found = []
        while True:
            region = _locate(kind, self._text)
            if region is None:
                return found
            self._text = self._text[:region.start] + self._text[region.end:]
            if region.content:
                found.append(region)

    def has_unclosed(self, kind: str) -> bool:
        return has_unclosed_tag(kind, self._text)

    def is_blank(self) -> bool:
        return not self._text.strip()
