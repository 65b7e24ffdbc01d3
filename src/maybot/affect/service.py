"""
affect/service.py — Affect Service

Joins the pure AffectEngine with EmotionStore:

  current_state(scope)                    load → lazy decay since last write → persist
  apply_interaction(scope, signal, actor) decay → cooldown-guarded update → persist → event log
  mood_summary(scope)                     summarize(current_state(scope))

The orchestrator and the analyze_interaction tool only ever go through here;
nothing else writes emotional_state. Interactions on one scope are applied
one at a time, and a decay computed from an older read never overwrites a
newer write.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from maybot.affect.engine import AffectEngine
from maybot.affect.model import AffectUpdate, EmotionalSignal, EmotionalState
from maybot.affect.store import EmotionStore
from maybot.observability.logger import get_logger

log = get_logger(__name__)

_SECONDS_PER_HOUR = 3600.0


class AffectService:

    def __init__(
        self,
        engine: AffectEngine,
        store: EmotionStore,
        *,
        scope_mode: str = "chat",
        clock: Callable[[], float] = time.time,
    ):
        self.engine = engine
        self._store = store
        self._scope_mode = scope_mode
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def scope_for(self, chat_id: str) -> str:
        """Map a conversation to its affect scope ("global" shares one mood)."""
        return "global" if self._scope_mode == "global" else f"chat:{chat_id}"

    async def current_state(self, scope: str) -> EmotionalState:
        now = self._clock()
        state, last_updated = await self._store.load(scope)
        if last_updated is None:
            await self._store.insert_if_absent(scope, state, now)
            return state
        decayed = self._decayed(state, last_updated, now)
        # drift of at most min_step is returned but not persisted
        threshold = self.engine.decay_config.min_step
        if not any(abs(decayed[k] - state[k]) > threshold for k in state):
            return decayed
        if await self._store.save(scope, decayed, now, unchanged_since=last_updated):
            hours = (now - last_updated) / _SECONDS_PER_HOUR
            log.debug("affect.decayed", scope=scope, hours=round(hours, 3))
            return decayed
        # a newer write landed after our read
        fresh, fresh_updated = await self._store.load(scope)
        return self._decayed(fresh, fresh_updated, now)

    async def apply_interaction(
        self,
        scope: str,
        signal: EmotionalSignal,
        actor: Optional[str] = None,
    ) -> AffectUpdate:
        async with self._locks.setdefault(scope, asyncio.Lock()):
            state = await self.current_state(scope)
            result = self.engine.update(state, signal, scope=scope)
            now = self._clock()
            if result.applied:
                await self._store.save(scope, result.updated, now)
            await self._store.record_event(scope, signal, actor=actor, applied=result.applied, now=now)
        return result

    async def mood_summary(self, scope: str) -> str:
        return self.engine.summarize(await self.current_state(scope))

    def _decayed(self, state: EmotionalState, last_updated: Optional[float], now: float) -> EmotionalState:
        if last_updated is None:
            return state
        hours = (now - last_updated) / _SECONDS_PER_HOUR
        return self.engine.decay(state, hours) if hours > 0 else state
