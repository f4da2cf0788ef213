"""Streaming client for OpenAI-compatible chat-completions endpoints.

Implements the Model protocol over server-sent events, so the CLI (or a
web service) can drive real conversations. The engine core never imports
this module.
"""

import asyncio
import json
import time
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from .config import Config
from .errors import TokenSourceFailure
from .logger import get_logger
from .messages import Message, to_model_messages

_log = get_logger("streaming")

RETRY_STATUSES = (429, 500, 502, 503, 504)

# Returned by parse_sse_line for the terminating "data: [DONE]" line
SSE_DONE = object()


def backoff(attempt: int) -> float:
    """Seconds to wait before retry number `attempt` (0-based)."""
    return min(2 ** (attempt + 1), 60)


def parse_sse_line(line: str) -> Any:
    """Decode one SSE line.

    Returns the JSON payload of a ``data:`` line, SSE_DONE for the
    terminator, and None for anything else (comments, blank lines, event
    names, undecodable payloads).
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data_str = line[5:].strip()
    if data_str == "[DONE]":
        return SSE_DONE
    try:
        return json.loads(data_str)
    except json.JSONDecodeError:
        _log.debug("Skipping undecodable SSE payload: %s", data_str[:200])
        return None


def normalize_usage(usage: Any) -> Dict[str, int]:
    """Keep the canonical token counts from a usage payload."""
    if not isinstance(usage, dict):
        return {}
    out: Dict[str, int] = {}
    for key in ("prompt_tokens", "completion_tokens", "total_tokens", "input_tokens", "output_tokens"):
        value = usage.get(key)
        if isinstance(value, (int, float)):
            out[key] = int(value)
    # Some providers return input/output instead of prompt/completion.
    if "prompt_tokens" not in out and "input_tokens" in out:
        out["prompt_tokens"] = out["input_tokens"]
    if "completion_tokens" not in out and "output_tokens" in out:
        out["completion_tokens"] = out["output_tokens"]
    if "total_tokens" not in out and ("prompt_tokens" in out or "completion_tokens" in out):
        out["total_tokens"] = out.get("prompt_tokens", 0) + out.get("completion_tokens", 0)
    return out


def _delta_text(delta: Dict[str, Any]) -> str:
    content = delta.get("content") or ""
    if isinstance(content, list):
        # Some providers emit content parts.
        content = "".join(
            part.get("text", "") for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        )
    return content


class ChatCompletionStream:
    """One streamed completion. Cancellable: aclose() drops the connection."""

    cancellable = True

    def __init__(self, response: httpx.Response, started_at: Optional[float] = None):
        self._response = response
        self._started_at = started_at or time.time()
        self.usage: Dict[str, int] = {}
        self.finish_reason: Optional[str] = None
        self.content_len = 0
        self.closed = False
        self._lines = None

    def __aiter__(self) -> AsyncIterator[str]:
        if self._lines is None:
            self._lines = self._iterate()
        return self._lines

    async def _iterate(self) -> AsyncIterator[str]:
        async for line in self._response.aiter_lines():
            if self.closed:
                return
            data = parse_sse_line(line)
            if data is None:
                continue
            if data is SSE_DONE:
                break
            if data.get("usage"):
                self.usage = normalize_usage(data["usage"])
            if "error" in data:
                raise TokenSourceFailure(f"API error in stream: {data['error']}")

            choices = data.get("choices") or []
            if not choices:
                continue
            choice = choices[0]
            if choice.get("finish_reason"):
                self.finish_reason = choice["finish_reason"]
            content = _delta_text(choice.get("delta") or {})
            if content:
                self.content_len += len(content)
                yield content

        _log.info("chat stream complete: finish=%s content_len=%d elapsed=%.1fs usage=%s",
                  self.finish_reason, self.content_len, time.time() - self._started_at, self.usage)
        if self.is_truncated:
            _log.warning("chat stream hit the max_tokens limit after %d chars; output is cut off",
                         self.content_len)

    @property
    def is_truncated(self) -> bool:
        """Check if response was cut off due to length."""
        return self.finish_reason == "length"

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._lines is not None:
            await self._lines.aclose()
        await self._response.aclose()


class ChatCompletionsClient:
    """Model backed by a ``/chat/completions`` endpoint.

    Use as an async context manager, or call aclose() when done.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str = "gpt-4o-mini",
        temperature: float = 0.0,
        max_tokens: int = 4096,
        timeout: float = 600.0,
        max_retries: int = 5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_wait: Callable[[int], float] = backoff,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_wait = retry_wait
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "ChatCompletionsClient":
        return cls(
            api_key=config.api_key,
            base_url=config.api_url,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.request_timeout,
            **kwargs,
        )

    async def __aenter__(self):
        self._ensure_client()
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=30.0),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
        self._client = None

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def build_payload(self, messages: List[Message], instruction: str) -> Dict[str, Any]:
        chat = [{"role": "system", "content": instruction}] if instruction else []
        chat.extend(to_model_messages(messages))
        return {
            "model": self.model,
            "messages": chat,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }

    async def open_stream(self, messages: List[Message], instruction: str) -> ChatCompletionStream:
        """Send the request and return the stream once the server accepts it.

        Connection errors and 429/5xx responses are retried with exponential
        backoff; once a stream is returned nothing is retried.
        """
        client = self._ensure_client()
        url = f"{self.base_url}/chat/completions"
        payload = self.build_payload(messages, instruction)
        _log.info("chat stream request: url=%s model=%s msgs=%d", url, self.model, len(payload["messages"]))

        last_error: Optional[Exception] = None
        started_at = time.time()
        for attempt in range(self.max_retries + 1):
            try:
                request = client.build_request("POST", url, headers=self._get_headers(), json=payload)
                response = await client.send(request, stream=True)
            except (httpx.TimeoutException, httpx.RequestError) as e:
                last_error = e
                _log.warning("Connection error on attempt %d/%d: %s: %s",
                             attempt + 1, self.max_retries + 1, type(e).__name__, e)
                if attempt < self.max_retries:
                    await self._wait(attempt, type(e).__name__)
                    continue
                raise TokenSourceFailure(f"Request failed after {self.max_retries} retries: {e}") from e

            if response.status_code < 400:
                return ChatCompletionStream(response, started_at=started_at)

            await response.aread()
            await response.aclose()
            body = response.text[:500]
            last_error = httpx.HTTPStatusError(
                f"HTTP {response.status_code}: {body}", request=request, response=response
            )
            _log.warning("HTTP error %d on attempt %d/%d: %s",
                         response.status_code, attempt + 1, self.max_retries + 1, body)
            if response.status_code in RETRY_STATUSES and attempt < self.max_retries:
                await self._wait(attempt, f"HTTP {response.status_code}")
                continue
            raise TokenSourceFailure(f"API error: HTTP {response.status_code}: {body}") from last_error

        raise TokenSourceFailure(f"Failed after {self.max_retries} retries: {last_error}")

    async def _wait(self, attempt: int, reason: str) -> None:
        wait = self.retry_wait(attempt)
        _log.info("Retrying in %.1fs (attempt %d/%d) reason=%s", wait, attempt + 1, self.max_retries, reason)
        if wait > 0:
            await asyncio.sleep(wait)
