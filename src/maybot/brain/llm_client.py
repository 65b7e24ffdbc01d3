"""
brain/llm_client.py — Provider-neutral LLM client contract

One client instance wraps exactly one API key. The credential pool picks the
key for each request and obtains (or reuses) the matching client through
create_llm_client().
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from maybot.brain.types import LLMConfig, LLMResponse, Message, Provider, ResponseSchema


class BaseLLMClient(ABC):
    """A single-key connection to one model provider."""

    provider: Provider

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        *,
        system_instruction: Optional[str] = None,
        response_schema: Optional[ResponseSchema] = None,
    ) -> LLMResponse:
        """
        Send one request and normalise the answer.

        With a response_schema the provider must return JSON matching it.
        Failures surface as LLMError subclasses so the pool can tell
        throttling from a dead key.
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Cheap check: is the provider reachable with this key?"""

    def __repr__(self) -> str:
        tail = self.api_key[-4:] if self.api_key else "none"
        return f"<{type(self).__name__} key=…{tail}>"


# ─────────────────────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────────────────────

def create_llm_client(
    provider: Provider | str,
    api_key: Optional[str],
    base_url: Optional[str] = None,
) -> BaseLLMClient:
    """Build the client for `provider` bound to `api_key`."""
    kind = Provider(provider)
    if kind is Provider.GEMINI:
        from maybot.brain.gemini_client import GeminiClient
        return GeminiClient(api_key=api_key, base_url=base_url)
    raise ValueError(f"No client implementation for provider '{kind.value}'")


# ─────────────────────────────────────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────────────────────────────────────


class LLMError(Exception):
    """A provider call failed. Carries the provider name and HTTP status if known."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class LLMConnectionError(LLMError):
    """Network failure, or the key was rejected (401/403)."""


class LLMRateLimitError(LLMError):
    """429 or quota exhausted. The key should cool down, not be dropped."""

    def __init__(self, message: str, provider: str = "", retry_after: Optional[float] = None):
        super().__init__(message, provider, status_code=429)
        self.retry_after = retry_after


class LLMTimeoutError(LLMError):
    """No answer within llm.timeout_seconds."""


class LLMContextError(LLMError):
    """Prompt larger than the model's context window."""


class LLMInvalidRequestError(LLMError):
    """The provider refused the request parameters (400)."""
