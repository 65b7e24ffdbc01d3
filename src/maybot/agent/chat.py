"""
agent/chat.py — Chat Platform Boundary

ChatClient is the narrow protocol the engine needs from a chat platform
adapter. deliver_reply() sends a Reply the way a person would type it: a
typing indicator, then each message after its own delay.

Background work (typing indicators) goes through fire_and_forget(), which
keeps a strong reference to the task and logs its failure instead of
letting it vanish.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Coroutine, Protocol, runtime_checkable

from maybot.agent.schemas import Reply
from maybot.observability.logger import get_logger

log = get_logger(__name__)

_background_tasks: set[asyncio.Task] = set()


@runtime_checkable
class ChatClient(Protocol):
    async def send_message(self, chat_id: str, text: str) -> Any: ...

    async def send_typing_indicator(self, chat_id: str) -> Any: ...


def fire_and_forget(coro: Coroutine[Any, Any, Any], *, name: str = "background") -> asyncio.Task:
    """Schedule `coro` without awaiting it. Exceptions are logged, never raised."""
    task = asyncio.create_task(coro)
    _background_tasks.add(task)

    def _done(t: asyncio.Task) -> None:
        _background_tasks.discard(t)
        if t.cancelled():
            return
        exc = t.exception()
        if exc is not None:
            log.warning("chat.background_failed", task=name, error=str(exc),
                        error_type=type(exc).__name__)

    task.add_done_callback(_done)
    return task


def pending_background_tasks() -> int:
    return len(_background_tasks)


async def deliver_reply(
    chat: ChatClient,
    chat_id: str,
    reply: Reply,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> int:
    """Send every message of `reply` in order. Returns the number sent."""
    sent = 0
    for message in reply.messages:
        try:
            await chat.send_typing_indicator(chat_id)
        except Exception as e:
            log.debug("chat.typing_failed", chat_id=chat_id, error=str(e))
        if message.delay_ms > 0:
            await sleep(message.delay_ms / 1000)
        await chat.send_message(chat_id, message.text)
        sent += 1
    log.info("chat.reply_delivered", chat_id=chat_id, messages=sent, intent=reply.intent)
    return sent
