"""
brain/pooled_client.py — Credential-Pooled LLM Client

Wraps per-key provider clients behind the CredentialPool so callers see a
single BaseLLMClient. Each generate() call:

  1. asks the pool for a usable key (the request is counted immediately)
  2. reuses or builds the provider client bound to that key
  3. bounds the call with asyncio.wait_for; a timeout is a failure
  4. lets the pool record success/failure and rotate on throttling

Usage:
    client = PooledLLMClient(pool, provider="gemini", timeout_seconds=60)
    response = await client.generate(messages, config, response_schema=PLAN_SCHEMA)
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from maybot.brain.llm_client import BaseLLMClient, LLMTimeoutError, create_llm_client
from maybot.brain.types import LLMConfig, LLMResponse, Message, Provider, ResponseSchema
from maybot.credentials.pool import CredentialPool
from maybot.credentials.store import Credential
from maybot.observability.logger import get_logger

log = get_logger(__name__)

ClientFactory = Callable[[str], BaseLLMClient]


class PooledLLMClient(BaseLLMClient):
    """BaseLLMClient that routes every call through a rotating credential pool."""

    def __init__(
        self,
        pool: CredentialPool,
        provider: Provider | str = Provider.GEMINI,
        *,
        base_url: Optional[str] = None,
        timeout_seconds: float = 60.0,
        client_factory: Optional[ClientFactory] = None,
    ):
        super().__init__(base_url=base_url)
        self._pool = pool
        self._provider = Provider(provider)
        self._timeout = timeout_seconds
        self._factory: ClientFactory = client_factory or (
            lambda key: create_llm_client(self._provider, api_key=key, base_url=base_url)
        )
        self._clients: dict[int, tuple[str, BaseLLMClient]] = {}

    @property
    def pool(self) -> CredentialPool:
        return self._pool

    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        *,
        system_instruction: Optional[str] = None,
        response_schema: Optional[ResponseSchema] = None,
    ) -> LLMResponse:
        async def _call(credential: Credential) -> LLMResponse:
            client = self._client_for(credential)
            try:
                return await asyncio.wait_for(
                    client.generate(
                        messages,
                        config,
                        system_instruction=system_instruction,
                        response_schema=response_schema,
                    ),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError as e:
                log.warning("llm.timeout", label=credential.label, timeout_s=self._timeout)
                raise LLMTimeoutError(
                    f"{self._provider.value} did not answer within {self._timeout}s",
                    provider=self._provider.value,
                ) from e

        return await self._pool.execute_with_retry(_call)

    async def health_check(self) -> bool:
        status = await self._pool.status()
        return status.usable_keys > 0

    def _client_for(self, credential: Credential) -> BaseLLMClient:
        cached = self._clients.get(credential.id)
        if cached is None or cached[0] != credential.secret:
            cached = (credential.secret, self._factory(credential.secret))
            self._clients[credential.id] = cached
        return cached[1]

    def __repr__(self) -> str:
        return f"<PooledLLMClient provider={self._provider.value} keys={self._pool.size}>"
