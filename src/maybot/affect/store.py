"""
affect/store.py — Emotional State Persistence

One row per (scope, emotion) in `emotional_state`. save() writes the whole
vector with a single multi-row upsert, so a reader never sees half an update.
A conditional save skips rows that changed after the caller read them.
"""

from __future__ import annotations

import json
from typing import Optional

from maybot.affect.model import EMOTIONS, NEUTRAL, EmotionalSignal, EmotionalState
from maybot.datastore.database import Database
from maybot.observability.logger import get_logger

log = get_logger(__name__)


class EmotionStore:

    def __init__(self, database: Database):
        self._db = database

    async def load(self, scope: str) -> tuple[EmotionalState, Optional[float]]:
        """
        Return (state, last_updated). A scope that was never saved comes back
        neutral with last_updated None. Unknown emotion rows are ignored.
        """
        rows = await self._db.fetch_all(
            "SELECT emotion_name, value, last_updated FROM emotional_state WHERE scope = ?",
            (scope,),
        )
        state = {name: NEUTRAL for name in EMOTIONS}
        last_updated: Optional[float] = None
        for row in rows:
            if row["emotion_name"] in state:
                state[row["emotion_name"]] = float(row["value"])
                last_updated = max(last_updated or 0.0, row["last_updated"])
        return state, last_updated

    async def save(
        self,
        scope: str,
        state: EmotionalState,
        now: float,
        *,
        unchanged_since: Optional[float] = None,
    ) -> bool:
        """
        Upsert the whole vector stamped with `now`.

        With `unchanged_since`, existing rows are only overwritten while their
        last_updated is not newer than that value, so a write derived from an
        older snapshot cannot clobber a newer one. Returns False when nothing
        was written.
        """
        values_sql = ", ".join("(?, ?, ?, ?)" for _ in EMOTIONS)
        params: list = []
        for name in EMOTIONS:
            params.extend([scope, name, state.get(name, NEUTRAL), now])
        guard = ""
        if unchanged_since is not None:
            guard = " WHERE emotional_state.last_updated <= ?"
            params.append(unchanged_since)
        result = await self._db.execute(
            f"""INSERT INTO emotional_state (scope, emotion_name, value, last_updated)
                VALUES {values_sql}
                ON CONFLICT(scope, emotion_name) DO UPDATE SET
                    value = excluded.value,
                    last_updated = excluded.last_updated{guard}""",
            params,
        )
        written = result.row_count > 0
        if written:
            log.debug("affect.persisted", scope=scope)
        else:
            log.debug("affect.stale_write_skipped", scope=scope, unchanged_since=unchanged_since)
        return written

    async def insert_if_absent(self, scope: str, state: EmotionalState, now: float) -> None:
        """Create the scope's rows; rows that already exist are left alone."""
        values_sql = ", ".join("(?, ?, ?, ?)" for _ in EMOTIONS)
        params: list = []
        for name in EMOTIONS:
            params.extend([scope, name, state.get(name, NEUTRAL), now])
        await self._db.execute(
            f"""INSERT INTO emotional_state (scope, emotion_name, value, last_updated)
                VALUES {values_sql}
                ON CONFLICT(scope, emotion_name) DO NOTHING""",
            params,
        )



    async def record_event(
        self,
        scope: str,
        signal: EmotionalSignal,
        *,
        actor: Optional[str],
        applied: bool,
        now: float,
    ) -> None:
        await self._db.execute(
            """INSERT INTO interaction_events
               (scope, actor, context, valence, intensity, target_emotions, applied, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                scope,
                actor,
                signal.context,
                signal.valence,
                signal.intensity,
                json.dumps(signal.target_emotions),
                int(applied),
                now,
            ),
        )
