"""
brain/gemini_client.py — Google Gemini LLM Client

Uses the `google-genai` SDK (google.genai), NOT the deprecated
`google-generativeai` package. One GeminiClient wraps one API key; an
optional base_url routes requests through a proxy (GEMINI_PROXY).

Structured output: when generate() receives a response_schema the request
sets response_mime_type="application/json" and passes the schema through,
so the model is constrained to the planning or final-reply shape.
"""

from __future__ import annotations

from typing import Optional

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from maybot.brain.llm_client import (
    BaseLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
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
from maybot.observability.logger import get_logger

log = get_logger(__name__)


class GeminiClient(BaseLLMClient):
    """Google Gemini API client bound to a single API key."""

    provider = Provider.GEMINI

    def __init__(self, api_key: Optional[str], base_url: Optional[str] = None):
        super().__init__(api_key=api_key, base_url=base_url)
        http_options = genai_types.HttpOptions(base_url=base_url) if base_url else None
        self._client = genai.Client(api_key=api_key, http_options=http_options)

    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        *,
        system_instruction: Optional[str] = None,
        response_schema: Optional[ResponseSchema] = None,
    ) -> LLMResponse:
        contents = self._to_provider_messages(messages)

        log.debug(
            "gemini.generate.start",
            model=config.model,
            message_count=len(messages),
            structured=response_schema is not None,
        )

        gen_config = genai_types.GenerateContentConfig(
            temperature=config.temperature,
            max_output_tokens=config.max_tokens,
            top_p=config.top_p,
            system_instruction=system_instruction,
            response_mime_type="application/json" if response_schema else None,
            response_schema=response_schema,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=config.model,
                contents=contents,
                config=gen_config,
            )
        except Exception as e:
            self._raise_normalised(e)

        result = self._from_provider_response(response, config.model)
        log.debug(
            "gemini.generate.complete",
            model=result.model,
            finish_reason=result.finish_reason.value,
            output_tokens=result.usage.output_tokens,
            total_tokens=result.usage.total_tokens,
        )
        return result

    async def health_check(self) -> bool:
        try:
            async for _ in await self._client.aio.models.list():
                return True
            return False
        except Exception as e:
            log.warning("gemini.health_check.failed", error=str(e))
            return False

    # ── Private helpers ───────────────────────────────────────────────────────

    def _to_provider_messages(self, messages: list[Message]) -> list[genai_types.Content]:
        """
        Translate internal Message list → Gemini Contents.

        Tool results become user-side text parts. Consecutive messages that map
        to the same Gemini role are merged into one Content.
        """
        contents: list[genai_types.Content] = []
        for msg in messages:
            if msg.role == Role.MODEL:
                role, text = "model", msg.content
            elif msg.role == Role.TOOL:
                role, text = "user", f"[tool_result name={msg.name}]\n{msg.content}"
            else:
                role, text = "user", msg.content

            part = genai_types.Part(text=text)
            if contents and contents[-1].role == role:
                contents[-1].parts.append(part)
            else:
                contents.append(genai_types.Content(role=role, parts=[part]))
        return contents

    def _from_provider_response(self, response, model_name: str) -> LLMResponse:
        """Translate Gemini GenerateContentResponse → internal LLMResponse."""
        finish_reason = FinishReason.STOP
        text_content: Optional[str] = None

        candidates = getattr(response, "candidates", None) or []
        if candidates:
            candidate = candidates[0]
            if candidate.finish_reason:
                reason_str = str(candidate.finish_reason).upper()
                if "MAX_TOKENS" in reason_str:
                    finish_reason = FinishReason.LENGTH
                elif "SAFETY" in reason_str or "PROHIBITED" in reason_str:
                    finish_reason = FinishReason.SAFETY
            parts = (candidate.content.parts if candidate.content else None) or []
            texts = [p.text for p in parts if getattr(p, "text", None)]
            text_content = "".join(texts) or None

        usage = TokenUsage()
        um = getattr(response, "usage_metadata", None)
        if um:
            usage = TokenUsage(
                input_tokens=getattr(um, "prompt_token_count", 0) or 0,
                output_tokens=getattr(um, "candidates_token_count", 0) or 0,
            )

        return LLMResponse(
            content=text_content,
            finish_reason=finish_reason,
            usage=usage,
            model=model_name,
            provider=Provider.GEMINI,
        )

    def _raise_normalised(self, exc: Exception) -> None:
        code = exc.code if isinstance(exc, genai_errors.APIError) else None
        err_str = str(exc).lower()

        if code == 429 or "resource_exhausted" in err_str or "quota" in err_str \
                or "rate limit" in err_str or "429" in err_str:
            raise LLMRateLimitError(str(exc), provider="gemini") from exc
        if "too long" in err_str or "context" in err_str and "exceed" in err_str:
            raise LLMContextError(str(exc), provider="gemini", status_code=code) from exc
        if code in (401, 403) or "api key" in err_str or "permission" in err_str:
            raise LLMConnectionError(str(exc), provider="gemini", status_code=code or 403) from exc
        if code == 400:
            raise LLMInvalidRequestError(str(exc), provider="gemini", status_code=400) from exc
        if code is not None and code >= 500:
            raise LLMConnectionError(str(exc), provider="gemini", status_code=code) from exc
        raise LLMError(str(exc), provider="gemini", status_code=code) from exc
