"""
credentials/pool.py — Rotating, Quota-Aware Credential Pool

Hands out one usable provider key per request and records how it went.

  acquire()          scan from the rotating cursor, atomically count the
                     request against the first usable key, return it
  report_success()   clear failures and any block
  report_failure()   count the failure, rotate the cursor; only hard
                     (non-throttling) failures can block a key
  execute_with_retry(op)
                     acquire → op(credential) → report, retrying throttled
                     calls on the next key after a fixed backoff

The cursor is in-process state owned by the pool. Counters and health live in
the store and are only changed by single-statement updates there.

Usage:
    pool = CredentialPool(store, max_attempts=3, throttle_backoff_seconds=10)
    await pool.refresh()
    response = await pool.execute_with_retry(lambda cred: call_gemini(cred.secret))
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from maybot.brain.llm_client import LLMRateLimitError
from maybot.credentials.store import Credential, CredentialStore
from maybot.exceptions import ProviderUnavailableError
from maybot.observability.logger import get_logger

log = get_logger(__name__)

T = TypeVar("T")

_THROTTLE_MARKERS = ("429", "rate limit", "quota exceeded", "resource_exhausted", "too many requests")


def is_throttling_error(exc: BaseException) -> bool:
    """True for provider rejections caused by rate limits or exhausted quota."""
    if isinstance(exc, LLMRateLimitError):
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _THROTTLE_MARKERS)


@dataclass
class KeyHealth:
    label: str
    is_active: bool
    usable: bool
    requests_this_minute: int
    rpm_limit: int
    requests_today: int
    rpd_limit: int
    failure_count: int
    is_blocked: bool
    blocked_until: Optional[float]


@dataclass
class PoolStatus:
    total_keys: int
    usable_keys: int
    current_label: Optional[str]
    keys: list[KeyHealth] = field(default_factory=list)


class CredentialPool:
    """
    Rotating pool of provider credentials with per-key quotas and health.

    Throttling (429 / quota) is expected to be transient: it rotates the
    cursor and never blocks a key. Hard failures block a key for
    `cooldown_seconds` once `max_failures` happen in a row.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        max_failures: int = 3,
        cooldown_seconds: float = 60.0,
        throttle_backoff_seconds: float = 10.0,
        max_attempts: int = 3,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._max_failures = max_failures
        self._cooldown = cooldown_seconds
        self._backoff = throttle_backoff_seconds
        self._max_attempts = max_attempts
        self._clock = clock
        self._sleep = sleep
        self._credentials: list[Credential] = []
        self._cursor = 0
        self._loaded = False

    @classmethod
    def from_settings(cls, store: CredentialStore, settings) -> "CredentialPool":
        cfg = settings.credentials
        return cls(
            store,
            max_failures=cfg.max_failures,
            cooldown_seconds=cfg.cooldown_seconds,
            throttle_backoff_seconds=cfg.throttle_backoff_seconds,
            max_attempts=cfg.max_attempts,
        )

    @property
    def size(self) -> int:
        return len(self._credentials)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def refresh(self) -> int:
        """Reload active credentials from storage. Returns how many were loaded."""
        current_id = self._credentials[self._cursor].id if self._credentials else None
        self._credentials = [c for c in await self._store.load_all() if c.is_active]
        self._loaded = True
        self._cursor = 0
        for i, cred in enumerate(self._credentials):
            if cred.id == current_id:
                self._cursor = i
                break
        log.info("pool.refreshed", total=len(self._credentials))
        return len(self._credentials)

    # ── Core contract ─────────────────────────────────────────────────────────

    async def acquire(self) -> Credential:
        """
        Return a usable credential with this request already counted.

        Raises:
            ProviderUnavailableError: one full scan found no usable credential.
        """
        if not self._loaded:
            await self.refresh()

        total = len(self._credentials)
        now = self._clock()
        for offset in range(total):
            idx = (self._cursor + offset) % total
            cred = self._credentials[idx]
            if await self._store.try_consume(cred.id, now):
                if idx != self._cursor:
                    log.info("pool.rotated", to_label=cred.label, skipped=offset)
                self._cursor = idx
                log.debug("pool.acquire", label=cred.label)
                return cred

        log.warning("pool.unavailable", total=total)
        raise ProviderUnavailableError(total=total)

    async def report_success(self, credential_id: int) -> None:
        await self._store.mark_success(credential_id)

    async def report_failure(self, credential_id: int, is_throttling: bool) -> None:
        await self._store.mark_failure(
            credential_id,
            is_throttling=is_throttling,
            now=self._clock(),
            max_failures=self._max_failures,
            cooldown_seconds=self._cooldown,
        )
        self._rotate_past(credential_id)
        log.warning(
            "pool.failure_reported",
            credential_id=credential_id,
            throttling=is_throttling,
        )

    async def execute_with_retry(
        self,
        op: Callable[[Credential], Awaitable[T]],
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Run `op` with a pooled credential.

        Throttling errors are retried on the next credential after a fixed
        backoff, `max_attempts` tries in total. Any other error is
        reported and re-raised at once. ProviderUnavailableError from acquire()
        propagates without retry.
        """
        attempts = self._max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        last_error: Optional[BaseException] = None

        for attempt in range(attempts):
            credential = await self.acquire()
            try:
                result = await op(credential)
            except Exception as e:
                throttled = is_throttling_error(e)
                await self.report_failure(credential.id, is_throttling=throttled)
                if not throttled:
                    raise
                last_error = e
                log.warning(
                    "pool.throttled",
                    label=credential.label,
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    backoff_s=self._backoff,
                )
                if attempt < attempts - 1:
                    await self._sleep(self._backoff)
                continue

            await self.report_success(credential.id)
            return result

        log.error("pool.retries_exhausted", attempts=attempts)
        raise last_error  # type: ignore[misc]

    # ── Introspection ─────────────────────────────────────────────────────────

    async def status(self) -> PoolStatus:
        """Health snapshot of every stored credential, for operators."""
        now = self._clock()
        creds = await self._store.load_all()
        keys = [
            KeyHealth(
                label=c.label,
                is_active=c.is_active,
                usable=c.is_usable(now),
                requests_this_minute=c.minute_count(now),
                rpm_limit=c.rpm_limit,
                requests_today=c.day_count(now),
                rpd_limit=c.rpd_limit,
                failure_count=c.failure_count,
                is_blocked=c.is_block_active(now),
                blocked_until=c.blocked_until if c.is_block_active(now) else None,
            )
            for c in creds
        ]
        current = self._credentials[self._cursor].label if self._credentials else None
        return PoolStatus(
            total_keys=len(creds),
            usable_keys=sum(1 for k in keys if k.usable),
            current_label=current,
            keys=keys,
        )

    # ── Private helpers ───────────────────────────────────────────────────────

    def _rotate_past(self, credential_id: int) -> None:
        for i, cred in enumerate(self._credentials):
            if cred.id == credential_id:
                self._cursor = (i + 1) % len(self._credentials)
                return
