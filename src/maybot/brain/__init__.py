"""
brain/__init__.py — maybot LLM Brain
"""

from __future__ import annotations

from maybot.brain.llm_client import (
    BaseLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
    LLMTimeoutError,
    create_llm_client,
)
from maybot.brain.types import (
    FinishReason,
    LLMConfig,
    LLMResponse,
    Message,
    Provider,
    ResponseSchema,
    Role,
    TokenUsage,
)

__all__ = [
    "BaseLLMClient",
    "create_llm_client",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMContextError",
    "LLMInvalidRequestError",
    "Message",
    "LLMConfig",
    "LLMResponse",
    "ResponseSchema",
    "TokenUsage",
    "Role",
    "Provider",
    "FinishReason",
]
