"""
datastore/conversation_log.py — Chat Message History

Stores each inbound message and every delivered bot message in
`chat_messages`, keyed by chat. recent() feeds the orchestrator the last
few messages of a chat so each turn carries the conversation so far.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any, Callable, Optional

from maybot.datastore.database import Database
from maybot.observability.logger import get_logger

if TYPE_CHECKING:
    from maybot.agent.schemas import InboundMessage, Reply

log = get_logger(__name__)


class ConversationLog:

    def __init__(self, database: Database, clock: Callable[[], float] = time.time):
        self._db = database
        self._clock = clock

    async def record_user_message(self, message: InboundMessage) -> None:
        await self._db.execute(
            """INSERT INTO chat_messages (chat_id, sender, user_id, message_text, created_at)
               VALUES (?, 'user', ?, ?, ?)""",
            (message.chat_id, message.user_id, message.text, self._clock()),
        )

    async def record_reply(self, chat_id: str, reply: Reply) -> None:
        if not reply.messages:
            return
        now = self._clock()
        values_sql = ", ".join("(?, 'bot', ?, ?, ?, ?, ?)" for _ in reply.messages)
        params: list[Any] = []
        for m in reply.messages:
            params.extend([chat_id, m.text, m.delay_ms, m.sticker, reply.intent, now])
        await self._db.execute(
            f"""INSERT INTO chat_messages
                (chat_id, sender, message_text, delay_ms, sticker, intent, created_at)
                VALUES {values_sql}""",
            params,
        )
        log.debug("conversation.reply_recorded", chat_id=chat_id, messages=len(reply.messages))

    async def recent(self, chat_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent messages for a chat, oldest first."""
        rows = await self._db.fetch_all(
            """SELECT sender, user_id, message_text, delay_ms, sticker, intent, created_at
               FROM chat_messages WHERE chat_id = ?
               ORDER BY id DESC LIMIT ?""",
            (chat_id, limit),
        )
        return [dict(row) for row in reversed(rows)]

    async def count(self, chat_id: Optional[str] = None) -> int:
        if chat_id is None:
            row = await self._db.fetch_one("SELECT COUNT(*) AS n FROM chat_messages")
        else:
            row = await self._db.fetch_one(
                "SELECT COUNT(*) AS n FROM chat_messages WHERE chat_id = ?", (chat_id,)
            )
        return int(row["n"]) if row else 0
