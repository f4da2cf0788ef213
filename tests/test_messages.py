"""Tests for messages, transcripts and the model-facing view."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from collegebot.messages import (
    ANSWER,
    ASSISTANT,
    QUESTION,
    USER,
    Message,
    consolidate_messages,
    dump_messages,
    load_messages,
    load_transcript,
    save_transcript,
    to_model_messages,
)


def test_unknown_role_rejected():
    with pytest.raises(ValueError):
        Message("system", "nope")


def test_transcript_round_trip(tmp_path):
    messages = [
        Message(USER, "Where should I apply?"),
        Message(USER, "Tool lookup returned: 42"),
        Message(ANSWER, "Consider «UC Davis»\nand UCLA"),
        Message(QUESTION, "What is your budget?"),
    ]
    assert load_messages(dump_messages(messages)) == messages

    path = tmp_path / "chat.json"
    save_transcript(messages, str(path))
    assert load_transcript(str(path)) == messages


def test_load_accepts_chat_object():
    text = '{"id": "c1", "messages": [{"role": "user", "content": "hi"}]}'
    assert load_messages(text) == [Message(USER, "hi")]


class TestConsolidate:

    def test_answer_and_question_fold_before_next_user(self):
        history = [
            Message(USER, "hi"),
            Message(ANSWER, "Hello"),
            Message(QUESTION, "Your GPA?"),
            Message(USER, "3.8"),
        ]
        assert consolidate_messages(history) == [
            Message(USER, "hi"),
            Message(ASSISTANT, "<answer>Hello</answer><question>Your GPA?</question>"),
            Message(USER, "3.8"),
        ]

    def test_consecutive_answers_are_joined(self):
        history = [Message(ANSWER, "One"), Message(ANSWER, "Two")]
        assert consolidate_messages(history) == [Message(ASSISTANT, "<answer>One\n\nTwo</answer>")]

    def test_trailing_content_flushed(self):
        assert consolidate_messages([Message(USER, "hi"), Message(QUESTION, "Why?")])[-1] == \
            Message(ASSISTANT, "<question>Why?</question>")


def test_model_roles_are_user_or_assistant():
    history = [Message(USER, "hi"), Message(ANSWER, "a"), Message(ASSISTANT, "raw"), Message(QUESTION, "q")]
    plain = to_model_messages(history, consolidate=False)
    assert [m["role"] for m in plain] == ["user", "assistant", "assistant", "assistant"]

    folded = to_model_messages(history)
    assert {m["role"] for m in folded} <= {"user", "assistant"}
    assert folded[1] == {"role": "assistant", "content": "<answer>a</answer>"}
