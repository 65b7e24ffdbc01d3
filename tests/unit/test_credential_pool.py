"""
tests/unit/test_credential_pool.py — Credential Store and Pool Unit Tests

Runs against a real SQLite state database under tmp_path with a fake clock,
so window resets, blocks and cooldowns are deterministic.

Run with:
    pytest tests/unit/test_credential_pool.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from maybot.brain.llm_client import LLMConnectionError, LLMError, LLMRateLimitError
from maybot.credentials.pool import CredentialPool, is_throttling_error
from maybot.credentials.store import CredentialStore
from maybot.exceptions import ProviderUnavailableError


@pytest.fixture
def store(state_db, clock):
    return CredentialStore(state_db, clock=clock)


@pytest.fixture
def make_pool(store, clock, fake_sleep):
    def _make(**kwargs):
        params = dict(
            max_failures=3,
            cooldown_seconds=60.0,
            throttle_backoff_seconds=10.0,
            max_attempts=3,
            clock=clock,
            sleep=fake_sleep,
        )
        params.update(kwargs)
        return CredentialPool(store, **params)
    return _make


async def seed(store, n=2, rpm=15, rpd=1500):
    keys = [("primary", "secret-0")] + [(f"key_{i}", f"secret-{i}") for i in range(1, n)]
    await store.seed(keys, rpm_limit=rpm, rpd_limit=rpd)
    return keys


# ─────────────────────────────────────────────────────────────────────────────
# Store
# ─────────────────────────────────────────────────────────────────────────────


class TestCredentialStore:
    @pytest.mark.asyncio
    async def test_seed_is_idempotent_and_keeps_counters(self, store, clock):
        await seed(store, n=1)
        cred = (await store.load_all())[0]
        assert await store.try_consume(cred.id, clock())
        await seed(store, n=1)
        creds = await store.load_all()
        assert len(creds) == 1
        assert creds[0].requests_this_minute == 1

    @pytest.mark.asyncio
    async def test_deactivate_missing(self, store):
        await seed(store, n=3)
        await store.deactivate_missing(["primary"])
        active = [c.label for c in await store.load_all() if c.is_active]
        assert active == ["primary"]

    @pytest.mark.asyncio
    async def test_deactivate_missing_with_no_labels(self, store):
        await seed(store, n=2)
        await store.deactivate_missing([])
        assert not any(c.is_active for c in await store.load_all())

    @pytest.mark.asyncio
    async def test_minute_quota_is_never_exceeded(self, store, clock):
        await seed(store, n=1, rpm=3)
        cred = (await store.load_all())[0]
        results = [await store.try_consume(cred.id, clock()) for _ in range(5)]
        assert results == [True, True, True, False, False]
        assert (await store.get(cred.id)).requests_this_minute == 3

    @pytest.mark.asyncio
    async def test_concurrent_consumers_respect_limit(self, store, clock):
        await seed(store, n=1, rpm=4)
        cred = (await store.load_all())[0]
        results = await asyncio.gather(*(store.try_consume(cred.id, clock()) for _ in range(10)))
        assert sum(results) == 4

    @pytest.mark.asyncio
    async def test_minute_window_resets(self, store, clock):
        await seed(store, n=1, rpm=1)
        cred = (await store.load_all())[0]
        assert await store.try_consume(cred.id, clock())
        assert not await store.try_consume(cred.id, clock())
        clock.advance(60)
        assert await store.try_consume(cred.id, clock())
        assert (await store.get(cred.id)).requests_this_minute == 1

    @pytest.mark.asyncio
    async def test_day_limit_blocks_until_day_window_expires(self, store, clock):
        await seed(store, n=1, rpm=10, rpd=2)
        cred = (await store.load_all())[0]
        assert await store.try_consume(cred.id, clock())
        clock.advance(61)
        assert await store.try_consume(cred.id, clock())
        clock.advance(61)
        assert not await store.try_consume(cred.id, clock())
        clock.advance(86_400)
        assert await store.try_consume(cred.id, clock())

    def test_repr_hides_secret(self):
        from maybot.credentials.store import Credential
        cred = Credential(
            id=1, label="primary", secret="AIza-very-secret", is_active=True,
            requests_this_minute=0, requests_today=0, rpm_limit=1, rpd_limit=1,
            minute_window_start=0, day_window_start=0,
        )
        assert "AIza" not in repr(cred)


# ─────────────────────────────────────────────────────────────────────────────
# Pool
# ─────────────────────────────────────────────────────────────────────────────


class TestAcquire:
    @pytest.mark.asyncio
    async def test_sticky_cursor_until_quota(self, store, make_pool):
        await seed(store, n=2, rpm=2)
        pool = make_pool()
        labels = [(await pool.acquire()).label for _ in range(4)]
        assert labels == ["primary", "primary", "key_1", "key_1"]

    @pytest.mark.asyncio
    async def test_unavailable_when_all_exhausted(self, store, make_pool):
        await seed(store, n=2, rpm=1)
        pool = make_pool()
        await pool.acquire()
        await pool.acquire()
        with pytest.raises(ProviderUnavailableError) as exc_info:
            await pool.acquire()
        assert exc_info.value.total == 2

    @pytest.mark.asyncio
    async def test_empty_pool_is_unavailable(self, make_pool):
        with pytest.raises(ProviderUnavailableError):
            await make_pool().acquire()

    @pytest.mark.asyncio
    async def test_inactive_keys_are_skipped(self, store, make_pool):
        await seed(store, n=2)
        await store.deactivate_missing(["key_1"])
        pool = make_pool()
        assert (await pool.acquire()).label == "key_1"


class TestFailureHandling:
    @pytest.mark.asyncio
    async def test_hard_failures_block_then_cooldown_unblocks(self, store, make_pool, clock):
        await seed(store, n=1)
        pool = make_pool(max_failures=2, cooldown_seconds=60)
        cred = await pool.acquire()
        await pool.report_failure(cred.id, is_throttling=False)
        await pool.acquire()
        await pool.report_failure(cred.id, is_throttling=False)

        stored = await store.get(cred.id)
        assert stored.is_blocked
        assert stored.blocked_until == pytest.approx(clock() + 60)
        with pytest.raises(ProviderUnavailableError):
            await pool.acquire()

        clock.advance(61)
        again = await pool.acquire()
        assert again.id == cred.id
        stored = await store.get(cred.id)
        assert not stored.is_blocked
        assert stored.hard_failure_streak == 0

    @pytest.mark.asyncio
    async def test_throttling_never_blocks(self, store, make_pool):
        await seed(store, n=1, rpm=100)
        pool = make_pool(max_failures=1)
        for _ in range(5):
            cred = await pool.acquire()
            await pool.report_failure(cred.id, is_throttling=True)
        stored = await store.get(cred.id)
        assert stored.failure_count == 5
        assert stored.hard_failure_streak == 0
        assert not stored.is_blocked

    @pytest.mark.asyncio
    async def test_success_clears_failures(self, store, make_pool):
        await seed(store, n=1)
        pool = make_pool()
        cred = await pool.acquire()
        await pool.report_failure(cred.id, is_throttling=False)
        await pool.report_success(cred.id)
        stored = await store.get(cred.id)
        assert stored.failure_count == 0
        assert stored.hard_failure_streak == 0

    @pytest.mark.asyncio
    async def test_failure_rotates_cursor(self, store, make_pool):
        await seed(store, n=2)
        pool = make_pool()
        first = await pool.acquire()
        await pool.report_failure(first.id, is_throttling=True)
        assert (await pool.acquire()).label == "key_1"


class TestExecuteWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self, store, make_pool, fake_sleep):
        await seed(store, n=1)
        pool = make_pool()

        async def op(cred):
            return cred.label

        assert await pool.execute_with_retry(op) == "primary"
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_throttled_call_moves_to_next_key(self, store, make_pool, fake_sleep):
        await seed(store, n=2)
        pool = make_pool()
        used = []

        async def op(cred):
            used.append(cred.label)
            if cred.label == "primary":
                raise LLMRateLimitError("429 quota", provider="gemini")
            return "ok"

        assert await pool.execute_with_retry(op) == "ok"
        assert used == ["primary", "key_1"]
        assert fake_sleep.calls == [10.0]

    @pytest.mark.asyncio
    async def test_throttling_exhausts_retries(self, store, make_pool, fake_sleep):
        await seed(store, n=3, rpm=100)
        pool = make_pool(max_attempts=3)
        attempts = 0

        async def op(cred):
            nonlocal attempts
            attempts += 1
            raise LLMError("RESOURCE_EXHAUSTED: quota exceeded")

        with pytest.raises(LLMError):
            await pool.execute_with_retry(op)
        assert attempts == 3
        # backoff only between attempts
        assert fake_sleep.calls == [10.0, 10.0]

    @pytest.mark.asyncio
    async def test_explicit_single_attempt_overrides_default(self, store, make_pool, fake_sleep):
        await seed(store, n=3, rpm=100)
        pool = make_pool(max_attempts=3)
        attempts = 0

        async def op(cred):
            nonlocal attempts
            attempts += 1
            raise LLMError("RESOURCE_EXHAUSTED: quota exceeded")

        with pytest.raises(LLMError):
            await pool.execute_with_retry(op, max_attempts=1)
        assert attempts == 1
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_zero_attempts_rejected(self, store, make_pool):
        await seed(store, n=1)
        pool = make_pool()

        async def op(cred):
            return "never"

        with pytest.raises(ValueError, match="max_attempts"):
            await pool.execute_with_retry(op, max_attempts=0)

    def test_constructor_rejects_zero_attempts(self, make_pool):
        with pytest.raises(ValueError, match="max_attempts"):
            make_pool(max_attempts=0)


    @pytest.mark.asyncio
    async def test_non_throttling_error_raised_immediately(self, store, make_pool, fake_sleep):
        await seed(store, n=2)
        pool = make_pool()
        attempts = 0

        async def op(cred):
            nonlocal attempts
            attempts += 1
            raise LLMConnectionError("bad key", provider="gemini", status_code=401)

        with pytest.raises(LLMConnectionError):
            await pool.execute_with_retry(op)
        assert attempts == 1
        assert fake_sleep.calls == []
        stored = (await store.load_all())[0]
        assert stored.hard_failure_streak == 1

    @pytest.mark.asyncio
    async def test_unavailable_is_not_retried(self, make_pool, fake_sleep):
        pool = make_pool()

        async def op(cred):
            return "never"

        with pytest.raises(ProviderUnavailableError):
            await pool.execute_with_retry(op)
        assert fake_sleep.calls == []


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_reports_per_key_health(self, store, make_pool):
        await seed(store, n=2, rpm=1)
        pool = make_pool()
        await pool.acquire()
        status = await pool.status()
        assert status.total_keys == 2
        assert status.usable_keys == 1
        assert status.current_label == "primary"
        primary = next(k for k in status.keys if k.label == "primary")
        assert primary.requests_this_minute == 1
        assert not primary.usable


class TestThrottlingClassifier:
    @pytest.mark.parametrize("message", [
        "429 Too Many Requests",
        "Rate limit reached",
        "Quota exceeded for metric",
        "RESOURCE_EXHAUSTED",
    ])
    def test_markers(self, message):
        assert is_throttling_error(Exception(message))

    def test_rate_limit_error_type(self):
        assert is_throttling_error(LLMRateLimitError("slow down"))

    def test_other_errors(self):
        assert not is_throttling_error(LLMConnectionError("connection refused"))
