"""
brain/types.py — maybot Brain Data Models

Shared types used across LLM clients and the agent orchestrator. Provider
clients map their native response shapes into these types.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    TOOL = "tool"           # tool result fed back to the model


class Provider(str, Enum):
    GEMINI = "gemini"


class FinishReason(str, Enum):
    STOP = "stop"               # normal completion
    LENGTH = "length"           # hit max_tokens
    SAFETY = "safety"           # blocked by provider safety filters
    ERROR = "error"             # something went wrong


# ─────────────────────────────────────────────────────────────────────────────
# Message types
# ─────────────────────────────────────────────────────────────────────────────


class Message(BaseModel):
    """
    A single message in the conversation sent to the provider.

    Tool results travel as role=TOOL with the tool name in `name`; providers
    without a native tool-result turn render them as user-side text.
    """
    role: Role
    content: str
    name: Optional[str] = None          # tool name for role=TOOL

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def model(cls, content: str) -> "Message":
        return cls(role=Role.MODEL, content=content)

    @classmethod
    def tool_response(cls, name: str, content: str) -> "Message":
        return cls(role=Role.TOOL, content=content, name=name)


# ─────────────────────────────────────────────────────────────────────────────
# LLM config
# ─────────────────────────────────────────────────────────────────────────────


class LLMConfig(BaseModel):
    """
    Per-request LLM configuration.
    Overrides the provider defaults for a single generate() call.
    """
    model: str
    temperature: float = 0.9
    max_tokens: int = 2048
    top_p: float = 0.95
    timeout_seconds: float = 60.0


# ─────────────────────────────────────────────────────────────────────────────
# LLM response
# ─────────────────────────────────────────────────────────────────────────────


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMResponse(BaseModel):
    """Normalised response from the provider."""
    content: Optional[str] = None
    finish_reason: FinishReason = FinishReason.STOP
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""
    provider: Provider = Provider.GEMINI


# Response schemas are plain JSON-schema dicts (OpenAPI subset understood by
# Gemini's response_schema).
ResponseSchema = dict[str, Any]
