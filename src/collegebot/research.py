"""Research tasks embedded in answers.

An answer may carry blocks such as::

    [RESEARCH_TASK]{"type": "college", "name": "UC Davis", "findings": [...]}[/RESEARCH_TASK]

They are surfaced on the answer's response event so the caller can store
them; they never alter the conversation.
"""

import json
import re
from typing import List, Literal, Optional

from pydantic import BaseModel, ValidationError

from .logger import get_logger, truncate

log = get_logger("research")

_TASK_RE = re.compile(r"\[RESEARCH_TASK\]\s*(\{[\s\S]*?\})\s*\[/RESEARCH_TASK\]")


class ResearchFinding(BaseModel):
    detail: str
    category: Literal["deadline", "requirement", "contact", "financial", "other"]
    confidence: Literal["high", "medium", "low"]
    source: Optional[str] = None


class ResearchTask(BaseModel):
    type: Literal["college", "scholarship"]
    name: str
    findings: List[ResearchFinding]


def extract_research_tasks(text: str) -> List[ResearchTask]:
    """Return every valid research task block in `text`, in order.

    Blocks that are not valid JSON or do not match the task shape are
    skipped with a warning.
    """
    tasks = []
    for match in _TASK_RE.finditer(text):
        raw = match.group(1)
        try:
            tasks.append(ResearchTask.model_validate(json.loads(raw)))
        except (json.JSONDecodeError, ValidationError) as e:
            log.warning("Skipping invalid research task %s: %s", truncate(raw, 120), e)
    return tasks


def research_task_dicts(text: str) -> List[dict]:
    """Research tasks as plain dicts for event payloads."""
    return [task.model_dump(exclude_none=True) for task in extract_research_tasks(text)]
