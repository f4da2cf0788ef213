"""Tests for stored-chat analysis and batch processing."""

import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from collegebot.analysis import analyze_chat, build_analysis_messages, process_chats
from collegebot.driver import ConversationDriver
from collegebot.messages import ANSWER, ASSISTANT, USER, Message
from collegebot.prompts import ANALYSIS_REQUEST
from collegebot.token_source import ScriptedModel

CHAT = {
    "id": "c1",
    "title": "Engineering schools",
    "messages": [
        {"role": "user", "content": "  I like robotics  "},
        {"role": "answer", "content": "Look at Purdue."},
        {"role": "question", "content": ""},
        {"role": "user", "content": None},
    ],
}


def test_build_analysis_messages():
    messages = build_analysis_messages(CHAT)
    assert messages[:2] == [Message(USER, "I like robotics"), Message(ASSISTANT, "Look at Purdue.")]
    assert len(messages) == 3
    last = messages[-1]
    assert last.role == USER
    assert last.content.startswith(ANALYSIS_REQUEST)
    assert json.loads(last.content[len(ANALYSIS_REQUEST):]) == CHAT


def test_analyze_chat_runs_driver(registry, collector):
    model = ScriptedModel(["<answer>Added Purdue to the map</answer>"])
    driver = ConversationDriver(model, registry, sink=collector)
    result = asyncio.run(analyze_chat(driver, CHAT, "Enrich the map"))
    assert result.messages[-1] == Message(ANSWER, "Added Purdue to the map")
    assert model.instructions[0].startswith("Enrich the map")


class TestProcessChats:

    def test_progress_events_and_persistence(self, registry, collector):
        chats = [
            dict(CHAT, id="a", title="First"),
            dict(CHAT, id="done", processed=True),
            dict(CHAT, id="b", title=""),
        ]
        model = ScriptedModel(["<answer>ok</answer>"], repeat_last=True)
        driver = ConversationDriver(model, registry, sink=collector)
        saved = []

        done = asyncio.run(process_chats(
            driver, chats,
            instruction_for=lambda chat: f"Analyse {chat['id']}",
            on_processed=lambda chat, result: saved.append(chat),
        ))

        assert [c["id"] for c in done] == ["a", "b"]
        assert all(c["processed"] and c["processedAt"] for c in saved)
        assert model.instructions[0].startswith("Analyse a")
        statuses = collector.of_type("status")
        assert statuses[0].total == 2
        assert [(s.progress, s.chat_title) for s in statuses[1:]] == [(1, "First"), (2, "b")]
        assert collector.types[-1] == "complete"

    def test_failed_chat_reports_error_and_continues(self, registry, collector):
        model = ScriptedModel([["boom", ConnectionError("upstream reset")], "<answer>fine</answer>"])
        driver = ConversationDriver(model, registry, sink=collector)
        saved = []

        async def persist(chat, result):
            saved.append(chat["id"])

        done = asyncio.run(process_chats(
            driver, [dict(CHAT, id="x"), dict(CHAT, id="y")], lambda chat: "go", persist,
        ))

        assert saved == ["y"]
        assert [c["id"] for c in done] == ["y"]
        errors = [e.content for e in collector.of_type("error")]
        assert any(e.startswith("Error processing chat:") and "upstream reset" in e for e in errors)

    def test_nothing_to_do(self, registry, collector):
        driver = ConversationDriver(ScriptedModel([]), registry, sink=collector)
        done = asyncio.run(process_chats(driver, [dict(CHAT, processed=True)], lambda chat: "go"))
        assert done == []
        assert collector.types == ["complete"]

    def test_async_instruction_builder(self, registry, collector):
        model = ScriptedModel(["<answer>ok</answer>"])
        driver = ConversationDriver(model, registry, sink=collector)

        async def instruction_for(chat):
            return f"fresh prompt for {chat['title']}"

        asyncio.run(process_chats(driver, [CHAT], instruction_for))
        assert model.instructions[0].startswith("fresh prompt for Engineering schools")
