"""Re-running stored chats through the driver.

A stored chat is a dict ``{"id", "title", "messages", "processed"?}``. The
analysis run replays its messages and then asks the model to process the
whole chat (for instance to enrich a student's map with the colleges it
mentions), with the caller's instruction.
"""

import inspect
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .driver import ConversationDriver, RunResult
from .logger import get_logger, log_exception
from .messages import ASSISTANT, USER, Message
from .prompts import analysis_request
from .tools.registry import ToolContext

log = get_logger("analysis")

Chat = Dict[str, Any]


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


def chat_label(chat: Chat) -> str:
    return chat.get("title") or str(chat.get("id", "untitled"))


def build_analysis_messages(chat: Chat) -> List[Message]:
    """Initial history for analysing `chat`.

    Prior messages with content keep "user" as is and become "assistant"
    otherwise; a final user message carries the chat as JSON.
    """
    messages = []
    for item in chat.get("messages", []):
        content = (item.get("content") or "").strip()
        if not content:
            continue
        role = USER if item.get("role") == USER else ASSISTANT
        messages.append(Message(role, content))
    messages.append(Message(USER, analysis_request(chat)))
    return messages


async def analyze_chat(
    driver: ConversationDriver,
    chat: Chat,
    instruction: str,
    context: Optional[ToolContext] = None,
    timeout: Optional[float] = None,
) -> RunResult:
    """Run one stored chat through the driver."""
    log.info("Analysing chat %s (%d messages)", chat.get("id"), len(chat.get("messages", [])))
    context = context or ToolContext(conversation_id=chat.get("id"))
    return await driver.run(build_analysis_messages(chat), instruction, context=context, timeout=timeout)


async def process_chats(
    driver: ConversationDriver,
    chats: Iterable[Chat],
    instruction_for: Callable[[Chat], Any],
    on_processed: Optional[Callable[[Chat, RunResult], Any]] = None,
    context: Optional[ToolContext] = None,
) -> List[Chat]:
    """Analyse every chat not yet marked processed, reporting progress.

    `instruction_for(chat)` builds a fresh instruction per chat (sync or
    async). `on_processed(chat, result)` receives the chat already marked
    ``processed`` and is where callers persist it. A chat whose run fails
    gets an error event and is skipped. Returns the chats that succeeded.
    """
    emitter = driver.emitter
    pending = [chat for chat in chats if not chat.get("processed")]
    log.info("process_chats: %d unprocessed chats", len(pending))

    if not pending:
        await emitter.complete()
        return []

    total = len(pending)
    await emitter.status(f"Processing {total} chats...", total=total)

    done: List[Chat] = []
    for index, chat in enumerate(pending, 1):
        label = chat_label(chat)
        await emitter.status(f"Processing chat: {label}", progress=index, total=total, chat_title=label)
        try:
            instruction = await _maybe_await(instruction_for(chat))
            chat_context = context or ToolContext(conversation_id=chat.get("id"))
            result = await analyze_chat(driver, chat, instruction, context=chat_context)
            updated = dict(chat, processed=True, processedAt=datetime.now(timezone.utc).isoformat())
            if on_processed is not None:
                await _maybe_await(on_processed(updated, result))
        except Exception as e:
            log_exception(log, f"Error processing chat {chat.get('id')}", e)
            await emitter.error(f"Error processing chat: {e}")
            continue
        done.append(updated)

    await emitter.complete()
    log.info("process_chats: %d/%d chats processed", len(done), total)
    return done
