"""
agent/schemas.py — Structured Output Shapes

Two constrained output shapes drive the loop:

  PLAN_SCHEMA   {needs_tools, tools_to_call: [{name, args}], reasoning}
  REPLY_SCHEMA  {type, messages: [{text, delay, sticker?}], intent}

Both are handed to the provider as response_schema; the pydantic models
below are what the parser validates the returned JSON against. Plan tool
args travel as a JSON-encoded string because the provider schema language
cannot express a free-form object; ToolCall decodes it.

The public surface is InboundMessage in and Reply out.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from maybot.tools.types import ToolCall, ToolName

DEFAULT_DELAY_MS = 1000
MAX_DELAY_MS = 10_000


# ─────────────────────────────────────────────────────────────────────────────
# Provider response schemas
# ─────────────────────────────────────────────────────────────────────────────

PLAN_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "needs_tools": {"type": "BOOLEAN"},
        "tools_to_call": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "name": {"type": "STRING", "enum": [t.value for t in ToolName]},
                    "args": {"type": "STRING", "description": "JSON-encoded arguments object"},
                },
                "required": ["name", "args"],
            },
        },
        "reasoning": {"type": "STRING"},
    },
    "required": ["needs_tools", "tools_to_call", "reasoning"],
}

REPLY_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "type": {"type": "STRING", "enum": ["reply"]},
        "messages": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "text": {"type": "STRING"},
                    "delay": {"type": "STRING", "description": "Milliseconds before sending"},
                    "sticker": {"type": "STRING", "nullable": True},
                },
                "required": ["text", "delay"],
            },
        },
        "intent": {"type": "STRING"},
    },
    "required": ["type", "messages", "intent"],
}


# ─────────────────────────────────────────────────────────────────────────────
# Parsed model output
# ─────────────────────────────────────────────────────────────────────────────


class PlanStep(BaseModel):
    needs_tools: bool = False
    tools_to_call: list[ToolCall] = Field(default_factory=list)
    reasoning: str = ""


class ReplyMessage(BaseModel):
    text: str = Field(..., min_length=1)
    delay: int = DEFAULT_DELAY_MS
    sticker: Optional[str] = None

    @field_validator("text", mode="before")
    @classmethod
    def _strip_text(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("delay", mode="before")
    @classmethod
    def _coerce_delay(cls, v: Any) -> int:
        if v is None or v == "":
            return DEFAULT_DELAY_MS
        try:
            delay = int(float(v))
        except (TypeError, ValueError):
            return DEFAULT_DELAY_MS
        return max(0, min(delay, MAX_DELAY_MS))

    @field_validator("sticker", mode="before")
    @classmethod
    def _blank_sticker(cls, v: Any) -> Optional[str]:
        if v in (None, "", "null", "none"):
            return None
        return str(v)


class StructuredReply(BaseModel):
    type: str = "reply"
    messages: list[ReplyMessage] = Field(..., min_length=1)
    intent: str = "reply"

    def to_reply(self) -> "Reply":
        return Reply(
            messages=[
                OutboundMessage(text=m.text, delay_ms=m.delay, sticker=m.sticker)
                for m in self.messages
            ],
            intent=self.intent,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Public surface
# ─────────────────────────────────────────────────────────────────────────────


class InboundMessage(BaseModel):
    """One message received from the chat platform."""
    chat_id: str
    text: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    message_id: Optional[str] = None
    is_group: bool = False

    @field_validator("chat_id", "user_id", "message_id", mode="before")
    @classmethod
    def _stringify_ids(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class OutboundMessage(BaseModel):
    text: str
    delay_ms: int = DEFAULT_DELAY_MS
    sticker: Optional[str] = None


class Reply(BaseModel):
    messages: list[OutboundMessage]
    intent: str
