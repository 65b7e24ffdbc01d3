"""
credentials/store.py — Credential Persistence

Reads and mutates the `credentials` table. Every counter or health change is
ONE conditional UPDATE, so concurrent callers (other tasks, other processes
sharing the file) can never push a counter past its limit: the usability
check and the increment are evaluated together by SQLite.

Rolling windows: a minute window lasts 60 s and a day window 86 400 s from
the first request counted in it. An expired window reads as zero and is
restarted by the increment that finds it expired.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from maybot.datastore.database import Database
from maybot.observability.logger import get_logger

log = get_logger(__name__)

MINUTE_WINDOW_SECONDS = 60.0
DAY_WINDOW_SECONDS = 86_400.0


@dataclass
class Credential:
    id: int
    label: str
    secret: str
    is_active: bool
    requests_this_minute: int
    requests_today: int
    rpm_limit: int
    rpd_limit: int
    minute_window_start: float
    day_window_start: float
    failure_count: int = 0
    hard_failure_streak: int = 0
    is_blocked: bool = False
    blocked_until: Optional[float] = None
    last_used_at: Optional[float] = None
    last_failure_at: Optional[float] = None

    @classmethod
    def from_row(cls, row: Any) -> "Credential":
        return cls(
            id=row["id"],
            label=row["label"],
            secret=row["secret"],
            is_active=bool(row["is_active"]),
            requests_this_minute=row["requests_this_minute"],
            requests_today=row["requests_today"],
            rpm_limit=row["rpm_limit"],
            rpd_limit=row["rpd_limit"],
            minute_window_start=row["minute_window_start"],
            day_window_start=row["day_window_start"],
            failure_count=row["failure_count"],
            hard_failure_streak=row["hard_failure_streak"],
            is_blocked=bool(row["is_blocked"]),
            blocked_until=row["blocked_until"],
            last_used_at=row["last_used_at"],
            last_failure_at=row["last_failure_at"],
        )

    def minute_count(self, now: float) -> int:
        if now - self.minute_window_start >= MINUTE_WINDOW_SECONDS:
            return 0
        return self.requests_this_minute

    def day_count(self, now: float) -> int:
        if now - self.day_window_start >= DAY_WINDOW_SECONDS:
            return 0
        return self.requests_today

    def is_block_active(self, now: float) -> bool:
        return self.is_blocked and (self.blocked_until is None or self.blocked_until > now)

    def is_usable(self, now: float) -> bool:
        return (
            self.is_active
            and not self.is_block_active(now)
            and self.minute_count(now) < self.rpm_limit
            and self.day_count(now) < self.rpd_limit
        )

    def __repr__(self) -> str:
        # never render the secret
        return f"<Credential id={self.id} label={self.label!r}>"


# ── SQL ───────────────────────────────────────────────────────────────────────

# Usability check and increment in one statement. SET expressions see the
# pre-update row, so every CASE below reads the old counters.
_ACQUIRE_SQL = """
UPDATE credentials SET
    requests_this_minute = CASE WHEN :now - minute_window_start >= :minute
                                THEN 1 ELSE requests_this_minute + 1 END,
    minute_window_start  = CASE WHEN :now - minute_window_start >= :minute
                                THEN :now ELSE minute_window_start END,
    requests_today       = CASE WHEN :now - day_window_start >= :day
                                THEN 1 ELSE requests_today + 1 END,
    day_window_start     = CASE WHEN :now - day_window_start >= :day
                                THEN :now ELSE day_window_start END,
    is_blocked           = CASE WHEN is_blocked = 1 AND blocked_until <= :now
                                THEN 0 ELSE is_blocked END,
    hard_failure_streak  = CASE WHEN is_blocked = 1 AND blocked_until <= :now
                                THEN 0 ELSE hard_failure_streak END,
    blocked_until        = CASE WHEN is_blocked = 1 AND blocked_until <= :now
                                THEN NULL ELSE blocked_until END,
    last_used_at         = :now
WHERE id = :id
  AND is_active = 1
  AND (is_blocked = 0 OR blocked_until <= :now)
  AND (:now - minute_window_start >= :minute OR requests_this_minute < rpm_limit)
  AND (:now - day_window_start >= :day OR requests_today < rpd_limit)
"""

_SUCCESS_SQL = """
UPDATE credentials SET
    failure_count = 0,
    hard_failure_streak = 0,
    is_blocked = 0,
    blocked_until = NULL
WHERE id = :id
"""

_FAILURE_SQL = """
UPDATE credentials SET
    failure_count       = failure_count + 1,
    hard_failure_streak = hard_failure_streak + :hard,
    is_blocked          = CASE WHEN :hard = 1 AND hard_failure_streak + 1 >= :max_failures
                               THEN 1 ELSE is_blocked END,
    blocked_until       = CASE WHEN :hard = 1 AND hard_failure_streak + 1 >= :max_failures
                               THEN :now + :cooldown ELSE blocked_until END,
    last_failure_at     = :now
WHERE id = :id
"""


class CredentialStore:
    """
    Async access to the credentials table.

    Usage:
        store = CredentialStore(state_db)
        await store.seed([("primary", "AIza..."), ("key_1", "AIza...")], rpm_limit=15, rpd_limit=1500)
        creds = await store.load_all()
        ok = await store.try_consume(creds[0].id, now=time.time())
    """

    def __init__(self, database: Database, clock: Callable[[], float] = time.time):
        self._db = database
        self._clock = clock

    async def seed(
        self,
        keys: Iterable[tuple[str, str]],
        *,
        rpm_limit: int,
        rpd_limit: int,
    ) -> int:
        """
        Upsert (label, secret) pairs. Existing rows keep their counters and
        health; the secret and limits follow the configuration. Returns the
        number of keys written.
        """
        count = 0
        now = self._clock()
        for label, secret in keys:
            await self._db.execute(
                """INSERT INTO credentials (label, secret, rpm_limit, rpd_limit, created_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(label) DO UPDATE SET
                       secret = excluded.secret,
                       rpm_limit = excluded.rpm_limit,
                       rpd_limit = excluded.rpd_limit,
                       is_active = 1""",
                (label, secret, rpm_limit, rpd_limit, now),
            )
            count += 1
        log.info("credentials.seeded", count=count)
        return count

    async def deactivate_missing(self, labels: Iterable[str]) -> None:
        """Mark credentials whose label is no longer configured as inactive."""
        keep = list(labels)
        if not keep:
            await self._db.execute("UPDATE credentials SET is_active = 0")
            return
        placeholders = ", ".join("?" for _ in keep)
        await self._db.execute(
            f"UPDATE credentials SET is_active = 0 WHERE label NOT IN ({placeholders})",
            keep,
        )

    async def load_all(self) -> list[Credential]:
        rows = await self._db.fetch_all("SELECT * FROM credentials ORDER BY id")
        return [Credential.from_row(r) for r in rows]

    async def get(self, credential_id: int) -> Optional[Credential]:
        row = await self._db.fetch_one("SELECT * FROM credentials WHERE id = ?", (credential_id,))
        return Credential.from_row(row) if row else None

    async def try_consume(self, credential_id: int, now: float) -> bool:
        """Atomically count one request against the credential if it is usable."""
        result = await self._db.execute(
            _ACQUIRE_SQL,
            {"id": credential_id, "now": now, "minute": MINUTE_WINDOW_SECONDS, "day": DAY_WINDOW_SECONDS},
        )
        return result.row_count == 1

    async def mark_success(self, credential_id: int) -> None:
        await self._db.execute(_SUCCESS_SQL, {"id": credential_id})

    async def mark_failure(
        self,
        credential_id: int,
        *,
        is_throttling: bool,
        now: float,
        max_failures: int,
        cooldown_seconds: float,
    ) -> None:
        await self._db.execute(
            _FAILURE_SQL,
            {
                "id": credential_id,
                "hard": 0 if is_throttling else 1,
                "now": now,
                "max_failures": max_failures,
                "cooldown": cooldown_seconds,
            },
        )
