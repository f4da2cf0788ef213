"""Tests for the chat-completions token source, using httpx.MockTransport."""

import asyncio
import json
import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from collegebot.driver import ConversationDriver
from collegebot.errors import TokenSourceFailure
from collegebot.messages import ANSWER, USER, Message
from collegebot.streaming_client import (
    SSE_DONE,
    ChatCompletionsClient,
    backoff,
    normalize_usage,
    parse_sse_line,
)


def sse_body(*pieces, usage=None, finish="stop"):
    lines = []
    for piece in pieces:
        lines.append("data: " + json.dumps({"choices": [{"delta": {"content": piece}}]}))
    lines.append("data: " + json.dumps({"choices": [{"delta": {}, "finish_reason": finish}]}))
    if usage:
        lines.append("data: " + json.dumps({"choices": [], "usage": usage}))
    lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode()


def make_client(handler, **kwargs):
    kwargs.setdefault("retry_wait", lambda attempt: 0)
    return ChatCompletionsClient("key", "https://llm.example/v1/", transport=httpx.MockTransport(handler), **kwargs)


async def collect(client, messages, instruction="sys"):
    stream = await client.open_stream(messages, instruction)
    chunks = [chunk async for chunk in stream]
    await stream.aclose()
    return stream, chunks


class TestParsing:

    def test_parse_sse_line(self):
        assert parse_sse_line('data: {"a": 1}') == {"a": 1}
        assert parse_sse_line("data: [DONE]") is SSE_DONE
        assert parse_sse_line(": keep-alive") is None
        assert parse_sse_line("") is None
        assert parse_sse_line("data: {broken") is None
        assert parse_sse_line("event: message") is None

    def test_normalize_usage(self):
        assert normalize_usage({"input_tokens": 3, "output_tokens": 4}) == {
            "input_tokens": 3, "output_tokens": 4,
            "prompt_tokens": 3, "completion_tokens": 4, "total_tokens": 7,
        }
        assert normalize_usage(None) == {}

    def test_backoff_is_capped(self):
        assert [backoff(a) for a in range(3)] == [2, 4, 8]
        assert backoff(10) == 60


class TestChatCompletionsClient:

    def test_streams_content_and_usage(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=sse_body("<answer>Hi", " there</answer>",
                                                        usage={"prompt_tokens": 5, "completion_tokens": 2}))

        async def go():
            async with make_client(handler) as client:
                return await collect(client, [Message(USER, "hello"), Message(ANSWER, "prev")])

        stream, chunks = asyncio.run(go())
        assert chunks == ["<answer>Hi", " there</answer>"]
        assert stream.finish_reason == "stop"
        assert not stream.is_truncated
        assert stream.usage["total_tokens"] == 7
        assert stream.cancellable
        assert seen["url"] == "https://llm.example/v1/chat/completions"
        assert seen["auth"] == "Bearer key"
        assert seen["body"]["stream"] is True
        assert seen["body"]["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "<answer>prev</answer>"},
        ]

    def test_length_finish_marks_stream_truncated(self):
        def handler(request):
            return httpx.Response(200, content=sse_body("<answer>UCLA, UC Davis and", finish="length"))

        async def go():
            async with make_client(handler) as client:
                return await collect(client, [Message(USER, "list schools")])

        stream, _ = asyncio.run(go())
        assert stream.finish_reason == "length"
        assert stream.is_truncated

    def test_retries_server_errors_before_streaming(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) < 3:
                return httpx.Response(503, text="overloaded")
            return httpx.Response(200, content=sse_body("ok"))

        async def go():
            async with make_client(handler) as client:
                return await collect(client, [Message(USER, "hi")])

        _, chunks = asyncio.run(go())
        assert chunks == ["ok"]
        assert len(attempts) == 3

    def test_retries_connection_errors(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            if len(attempts) == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, content=sse_body("ok"))

        async def go():
            async with make_client(handler) as client:
                return await collect(client, [Message(USER, "hi")])

        _, chunks = asyncio.run(go())
        assert chunks == ["ok"]

    def test_client_errors_are_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            return httpx.Response(401, text="bad key")

        async def go():
            async with make_client(handler) as client:
                await client.open_stream([Message(USER, "hi")], "sys")

        with pytest.raises(TokenSourceFailure, match="401"):
            asyncio.run(go())
        assert len(attempts) == 1

    def test_gives_up_after_max_retries(self):
        def handler(request):
            return httpx.Response(429, text="slow down")

        async def go():
            async with make_client(handler, max_retries=2) as client:
                await client.open_stream([Message(USER, "hi")], "sys")

        with pytest.raises(TokenSourceFailure, match="429"):
            asyncio.run(go())

    def test_error_payload_in_stream(self):
        def handler(request):
            body = 'data: {"choices":[{"delta":{"content":"par"}}]}\n\ndata: {"error":{"message":"overloaded"}}\n\n'
            return httpx.Response(200, content=body.encode())

        async def go():
            async with make_client(handler) as client:
                return await collect(client, [Message(USER, "hi")])

        with pytest.raises(TokenSourceFailure, match="overloaded"):
            asyncio.run(go())

    def test_drives_a_conversation(self, registry, collector):
        bodies = [
            sse_body('<thinking>look it up</thinking><tool><name>lookup</name>',
                     '<parameters>{"q":"x"}</parameters></tool>', "ignored tail"),
            sse_body("<answer>The answer is 42</answer>", "<title>Lookup</title>"),
        ]

        def handler(request):
            return httpx.Response(200, content=bodies.pop(0))

        async def go():
            async with make_client(handler) as client:
                driver = ConversationDriver(client, registry, sink=collector)
                return await driver.run([Message(USER, "what is it?")], "instr")

        result = asyncio.run(go())
        assert result.messages[1:] == [
            Message(USER, "Tool lookup returned: 42"),
            Message(ANSWER, "The answer is 42"),
        ]
        response = collector.of_type("response")[0]
        assert response.suggested_title == "Lookup"
