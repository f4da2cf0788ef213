"""Conversation messages and transcript (de)serialization."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List

USER = "user"
ASSISTANT = "assistant"
ANSWER = "answer"
QUESTION = "question"

ROLES = (USER, ASSISTANT, ANSWER, QUESTION)


@dataclass
class Message:
    """A single conversation message.

    "user"/"assistant" are exchanged with the model. "answer" is a finalized
    user-visible response and "question" is text that ended a turn without
    an explicit answer tag.
    """
    role: str
    content: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(role=data["role"], content=data.get("content") or "")


def dump_messages(messages: Iterable[Message], indent: int = 2) -> str:
    """Serialize a message list to JSON."""
    return json.dumps([m.to_dict() for m in messages], indent=indent, ensure_ascii=False)


def load_messages(text: str) -> List[Message]:
    """Parse a message list produced by dump_messages.

    Also accepts a chat object of the form {"messages": [...]}.
    """
    data = json.loads(text)
    if isinstance(data, dict):
        data = data.get("messages", [])
    return [Message.from_dict(item) for item in data]


def save_transcript(messages: Iterable[Message], path: str) -> None:
    """Write a transcript to disk."""
    Path(path).write_text(dump_messages(messages), encoding="utf-8")


def load_transcript(path: str) -> List[Message]:
    """Read a transcript written by save_transcript."""
    return load_messages(Path(path).read_text(encoding="utf-8"))


# ── Model-facing views ───────────────────────────────────────────

def _structured(answer: str, question: str) -> str:
    content = ""
    if answer:
        content += f"<answer>{answer}</answer>"
    if question:
        content += f"<question>{question}</question>"
    return content


def consolidate_messages(messages: Iterable[Message]) -> List[Message]:
    """Fold answer/question messages into structured assistant messages.

    Pending answer and question content is flushed as a single assistant
    message right before the next user or assistant message (and at the
    end), so the model sees its previous output in tagged form.
    """
    consolidated: List[Message] = []
    pending_answer = ""
    pending_question = ""

    def flush():
        nonlocal pending_answer, pending_question
        if pending_answer or pending_question:
            consolidated.append(Message(ASSISTANT, _structured(pending_answer, pending_question)))
            pending_answer = ""
            pending_question = ""

    for message in messages:
        if message.role == ANSWER:
            pending_answer = f"{pending_answer}\n\n{message.content}" if pending_answer else message.content
        elif message.role == QUESTION:
            pending_question = f"{pending_question}\n\n{message.content}" if pending_question else message.content
        else:
            flush()
            consolidated.append(message)
    flush()
    return consolidated


def to_model_messages(messages: Iterable[Message], consolidate: bool = True) -> List[Dict[str, str]]:
    """Map history onto the two roles a chat model understands.

    user stays user; assistant, answer and question become assistant.
    """
    source = consolidate_messages(messages) if consolidate else list(messages)
    return [
        {"role": USER if m.role == USER else ASSISTANT, "content": m.content}
        for m in source
    ]
