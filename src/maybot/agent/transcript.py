"""
agent/transcript.py — Conversation Transcript

The ordered, append-only record of one orchestration run: replayed chat
history, the user's message, each plan the model produced, and every tool
result. Owned by a single run and discarded when it ends.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Mapping, Optional

from maybot.brain.types import Message


class TurnKind(str, Enum):
    USER = "user"
    MODEL = "model"
    TOOL_RESULT = "tool_result"


@dataclass(frozen=True)
class Turn:
    kind: TurnKind
    text: str
    payload: Optional[dict[str, Any]] = None
    tool_name: Optional[str] = None
    success: Optional[bool] = None


@dataclass
class Transcript:
    _turns: list[Turn] = field(default_factory=list)

    def add_user(self, text: str) -> None:
        self._turns.append(Turn(TurnKind.USER, text))

    def add_history(self, rows: Iterable[Mapping[str, Any]]) -> int:
        """
        Replay earlier chat_messages rows, oldest first: user rows become user
        turns, bot rows become plain-text model turns. Bot rows before the
        first user row are skipped so the provider sees a user turn first.
        Returns the number of turns added.
        """
        added = 0
        for row in rows:
            text = (row.get("message_text") or "").strip()
            if not text:
                continue
            if row.get("sender") == "user":
                self._turns.append(Turn(TurnKind.USER, text))
            elif added:
                self._turns.append(Turn(TurnKind.MODEL, text))
            else:
                continue
            added += 1
        return added


    def add_model(self, payload: dict[str, Any]) -> None:
        self._turns.append(
            Turn(TurnKind.MODEL, json.dumps(payload, ensure_ascii=False), payload=payload)
        )

    def add_tool_result(self, name: str, content: str, success: bool) -> None:
        self._turns.append(Turn(TurnKind.TOOL_RESULT, content, tool_name=name, success=success))

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def tool_results(self) -> list[Turn]:
        return [t for t in self._turns if t.kind is TurnKind.TOOL_RESULT]

    def to_messages(self) -> list[Message]:
        """Render as provider messages, oldest first."""
        messages: list[Message] = []
        for turn in self._turns:
            if turn.kind is TurnKind.USER:
                messages.append(Message.user(turn.text))
            elif turn.kind is TurnKind.MODEL:
                messages.append(Message.model(turn.text))
            else:
                status = "ok" if turn.success else "failed"
                messages.append(
                    Message.tool_response(turn.tool_name or "unknown", f"status={status}\n{turn.text}")
                )
        return messages

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)
