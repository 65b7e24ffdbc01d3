"""
tests/unit/test_affect.py — Affect Engine, Store and Service Unit Tests

Pure-function tests for decay/delta/coupling/summary, the cooldown guard
with a fake clock, and the persisted service against a tmp SQLite file.

Run with:
    pytest tests/unit/test_affect.py -v
"""

from __future__ import annotations

import asyncio

import pytest
from pydantic import ValidationError

from maybot.affect.engine import (
    AffectEngine,
    apply_signal,
    compute_delta,
    decay,
    dominant_emotions,
    interpret_mood,
    summarize,
)
from maybot.affect.model import (
    EMOTIONS,
    NEUTRAL,
    DecayConfig,
    EmotionalSignal,
    PersonalityProfile,
    neutral_state,
)
from maybot.affect.service import AffectService
from maybot.affect.store import EmotionStore


def signal(valence, intensity, *targets, context=None):
    return EmotionalSignal(
        valence=valence, intensity=intensity, target_emotions=list(targets), context=context
    )


def state_with(**values):
    state = neutral_state()
    state.update(values)
    return state


# ─────────────────────────────────────────────────────────────────────────────
# Signal model
# ─────────────────────────────────────────────────────────────────────────────


class TestEmotionalSignal:
    def test_twelve_emotions_neutral_at_half(self):
        assert len(EMOTIONS) == 12
        assert len(set(EMOTIONS)) == 12
        assert NEUTRAL == 0.5
        assert neutral_state() == {name: 0.5 for name in EMOTIONS}

    def test_names_normalised_and_deduplicated(self):
        s = signal(0.5, 0.5, " Joy", "joy", "TRUST")
        assert s.target_emotions == ["joy", "trust"]

    def test_unknown_emotion_rejected(self):
        with pytest.raises(ValidationError, match="unknown emotion"):
            signal(0.5, 0.5, "boredom")

    @pytest.mark.parametrize("valence,intensity", [(1.5, 0.5), (-1.1, 0.5), (0.5, 1.2), (0.5, -0.1)])
    def test_out_of_range_rejected(self, valence, intensity):
        with pytest.raises(ValidationError):
            signal(valence, intensity, "joy")


# ─────────────────────────────────────────────────────────────────────────────
# Decay
# ─────────────────────────────────────────────────────────────────────────────


class TestDecay:
    def test_no_time_no_change(self):
        state = state_with(joy=0.9)
        assert decay(state, 0) == state
        assert decay(state, -3) == state

    def test_moves_toward_neutral(self):
        result = decay(state_with(joy=0.9, sadness=0.1), hours_elapsed=1)
        assert NEUTRAL < result["joy"] < 0.9
        assert 0.1 < result["sadness"] < NEUTRAL

    def test_step_formula(self):
        p = PersonalityProfile(forgiveness_rate=0.4, rumination=0.7)
        result = decay(state_with(joy=0.9), 1, p, DecayConfig(base_rate=0.05))
        expected_step = 0.4 * 0.05 * 1 * 0.4 / 0.7
        assert result["joy"] == pytest.approx(0.9 - expected_step)

    def test_long_gap_lands_exactly_on_neutral(self):
        result = decay(state_with(joy=1.0, anger=0.0), hours_elapsed=10_000)
        assert result["joy"] == NEUTRAL
        assert result["anger"] == NEUTRAL

    def test_min_step_never_overshoots(self):
        result = decay(state_with(joy=NEUTRAL + 0.0004), hours_elapsed=0.0001)
        assert result["joy"] == NEUTRAL

    def test_repeated_decay_converges_monotonically(self):
        state = state_with(joy=0.95, fear=0.05)
        previous_gap = abs(state["joy"] - NEUTRAL)
        for _ in range(2000):
            state = decay(state, hours_elapsed=0.5)
            gap = abs(state["joy"] - NEUTRAL)
            assert gap <= previous_gap
            assert state["joy"] >= NEUTRAL
            assert state["fear"] <= NEUTRAL
            previous_gap = gap
        assert state["joy"] == pytest.approx(NEUTRAL)
        assert state["fear"] == pytest.approx(NEUTRAL)

    def test_missing_emotions_filled_with_neutral(self):
        result = decay({"joy": 0.7}, hours_elapsed=1)
        assert set(result) == set(EMOTIONS)


# ─────────────────────────────────────────────────────────────────────────────
# Delta and coupling
# ─────────────────────────────────────────────────────────────────────────────


class TestComputeDelta:
    def test_clamped_to_max_delta(self):
        assert compute_delta(1.0, 1.0) == pytest.approx(0.15)
        assert compute_delta(-1.0, 1.0) == pytest.approx(-0.15)

    def test_optimism_asymmetry(self):
        p = PersonalityProfile(sensitivity=0.5, optimism=1.0, max_delta_per_interaction=1.0)
        assert compute_delta(0.4, 0.5, p) == pytest.approx(0.1 * 1.3)
        assert compute_delta(-0.4, 0.5, p) == pytest.approx(-0.1 * 0.8)

    def test_zero_valence(self):
        assert compute_delta(0.0, 1.0) == 0.0


class TestApplySignal:
    def test_joy_scenario_couples_into_sadness_and_anger(self):
        result = apply_signal(neutral_state(), signal(0.8, 0.9, "joy"))
        assert result.updated["joy"] == pytest.approx(0.65)
        assert result.updated["sadness"] < NEUTRAL
        assert result.updated["anger"] < NEUTRAL
        assert result.updated["playfulness"] > NEUTRAL
        assert result.updated["sadness"] == pytest.approx(NEUTRAL - 0.15 * 0.6 * 0.3)
        assert result.applied
        assert "joy" in result.changes

    def test_values_stay_in_unit_interval(self):
        state = {name: 1.0 for name in EMOTIONS}
        for valence in (1.0, -1.0):
            for _ in range(30):
                state = apply_signal(state, signal(valence, 1.0, *EMOTIONS)).updated
                assert all(0.0 <= v <= 1.0 for v in state.values())

    def test_coupling_uses_primary_deltas_only(self):
        # joy drives playfulness, and playfulness drives joy; neither feeds back
        result = apply_signal(neutral_state(), signal(1.0, 1.0, "joy"))
        assert result.updated["joy"] == pytest.approx(NEUTRAL + 0.15)

    def test_no_targets_no_change(self):
        result = apply_signal(neutral_state(), signal(1.0, 1.0))
        assert result.changes == {}

    def test_to_dict_shape(self):
        payload = apply_signal(neutral_state(), signal(0.5, 0.5, "trust")).to_dict()
        assert set(payload) == {"previous_state", "updated_state", "changes", "applied"}
        assert payload["previous_state"]["trust"] == 0.5


# ─────────────────────────────────────────────────────────────────────────────
# Summary
# ─────────────────────────────────────────────────────────────────────────────


class TestSummarize:
    def test_neutral_state_reads_neutral(self):
        assert interpret_mood(neutral_state()) == "Neutral and balanced"
        text = summarize(neutral_state())
        assert "Neutral and balanced" in text
        assert "No feeling stands out" in text

    def test_positive_state(self):
        state = state_with(joy=0.9, affection=0.8, playfulness=0.8)
        assert interpret_mood(state) == "Very positive and warm"

    def test_negative_state(self):
        state = state_with(sadness=0.9, anger=0.9, joy=0.2)
        assert interpret_mood(state) == "Cautious or distant"

    def test_dominant_emotions(self):
        state = state_with(anger=0.95, joy=0.6, fear=0.2)
        assert [name for name, _ in dominant_emotions(state)] == ["anger", "fear", "joy"]

    def test_summary_lists_strong_feelings(self):
        text = summarize(state_with(anger=0.95))
        assert "anger high (95%)" in text
        assert "tone" in text


# ─────────────────────────────────────────────────────────────────────────────
# Engine cooldown
# ─────────────────────────────────────────────────────────────────────────────


class TestAffectEngine:
    def test_second_update_inside_cooldown_is_skipped(self, clock):
        engine = AffectEngine(clock=clock)
        first = engine.update(neutral_state(), signal(0.8, 0.9, "joy"), scope="chat:1")
        assert first.applied

        clock.advance(0.5)
        second = engine.update(first.updated, signal(0.8, 0.9, "joy"), scope="chat:1")
        assert not second.applied
        assert second.updated == first.updated

    def test_update_after_cooldown_applies(self, clock):
        engine = AffectEngine(clock=clock)
        engine.update(neutral_state(), signal(0.8, 0.9, "joy"), scope="chat:1")
        clock.advance(1.0)
        assert engine.update(neutral_state(), signal(0.8, 0.9, "joy"), scope="chat:1").applied

    def test_cooldown_is_per_scope(self, clock):
        engine = AffectEngine(clock=clock)
        engine.update(neutral_state(), signal(0.8, 0.9, "joy"), scope="chat:1")
        assert engine.update(neutral_state(), signal(0.8, 0.9, "joy"), scope="chat:2").applied


# ─────────────────────────────────────────────────────────────────────────────
# Store + service
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def service(state_db, clock):
    engine = AffectEngine(clock=clock)
    return AffectService(engine, EmotionStore(state_db), scope_mode="chat", clock=clock)


class TestEmotionStore:
    @pytest.mark.asyncio
    async def test_unknown_scope_loads_neutral(self, state_db):
        state, last = await EmotionStore(state_db).load("chat:nobody")
        assert state == neutral_state()
        assert last is None

    @pytest.mark.asyncio
    async def test_save_and_load(self, state_db):
        store = EmotionStore(state_db)
        await store.save("global", state_with(joy=0.8), now=123.0)
        await store.save("global", state_with(joy=0.7), now=456.0)
        state, last = await store.load("global")
        assert state["joy"] == pytest.approx(0.7)
        assert last == 456.0
        rows = await state_db.fetch_all("SELECT * FROM emotional_state WHERE scope = 'global'")
        assert len(rows) == len(EMOTIONS)

    @pytest.mark.asyncio
    async def test_conditional_save_skips_newer_rows(self, state_db):
        store = EmotionStore(state_db)
        await store.save("global", state_with(sadness=0.2), now=100.0)
        await store.save("global", state_with(sadness=0.35), now=200.0)

        written = await store.save("global", state_with(sadness=0.5), now=300.0, unchanged_since=100.0)
        assert written is False
        state, last = await store.load("global")
        assert state["sadness"] == pytest.approx(0.35)
        assert last == 200.0

    @pytest.mark.asyncio
    async def test_conditional_save_applies_when_unchanged(self, state_db):
        store = EmotionStore(state_db)
        await store.save("global", state_with(sadness=0.2), now=100.0)
        assert await store.save("global", state_with(sadness=0.4), now=300.0, unchanged_since=100.0)
        state, last = await store.load("global")
        assert state["sadness"] == pytest.approx(0.4)
        assert last == 300.0

    @pytest.mark.asyncio
    async def test_insert_if_absent_keeps_existing(self, state_db):
        store = EmotionStore(state_db)
        await store.save("global", state_with(joy=0.8), now=100.0)
        await store.insert_if_absent("global", neutral_state(), now=200.0)
        state, last = await store.load("global")
        assert state["joy"] == pytest.approx(0.8)
        assert last == 100.0


class PausingStore(EmotionStore):
    """Holds the next load() after it has read, until released."""

    def __init__(self, database):
        super().__init__(database)
        self.pause_next = False
        self.loaded = asyncio.Event()
        self.release = asyncio.Event()

    async def load(self, scope):
        result = await super().load(scope)
        if self.pause_next:
            self.pause_next = False
            self.loaded.set()
            await self.release.wait()
        return result



class TestAffectService:
    def test_scope_for(self, state_db, clock):
        store = EmotionStore(state_db)
        assert AffectService(AffectEngine(), store, scope_mode="chat").scope_for("9") == "chat:9"
        assert AffectService(AffectEngine(), store, scope_mode="global").scope_for("9") == "global"

    @pytest.mark.asyncio
    async def test_first_read_persists_neutral(self, service, state_db):
        state = await service.current_state("chat:1")
        assert state == neutral_state()
        rows = await state_db.fetch_all("SELECT * FROM emotional_state")
        assert len(rows) == len(EMOTIONS)

    @pytest.mark.asyncio
    async def test_apply_interaction_persists_and_records_event(self, service, state_db):
        result = await service.apply_interaction("chat:1", signal(0.8, 0.9, "joy"), actor="user:5")
        assert result.applied
        stored = await service.current_state("chat:1")
        assert stored["joy"] == pytest.approx(0.65)

        events = await state_db.fetch_all("SELECT * FROM interaction_events")
        assert len(events) == 1
        assert events[0]["actor"] == "user:5"
        assert events[0]["applied"] == 1

    @pytest.mark.asyncio
    async def test_skipped_update_still_recorded(self, service, state_db):
        await service.apply_interaction("chat:1", signal(0.8, 0.9, "joy"))
        second = await service.apply_interaction("chat:1", signal(-0.8, 0.9, "anger"))
        assert not second.applied
        events = await state_db.fetch_all("SELECT applied FROM interaction_events ORDER BY id")
        assert [e["applied"] for e in events] == [1, 0]

    @pytest.mark.asyncio
    async def test_lazy_decay_on_read(self, service, clock):
        await service.apply_interaction("chat:1", signal(1.0, 1.0, "joy"))
        clock.advance(10 * 3600)
        decayed = await service.current_state("chat:1")
        assert NEUTRAL < decayed["joy"] < 0.65
        # decayed value was persisted: reading again without time passing is stable
        assert await service.current_state("chat:1") == decayed

    @pytest.mark.asyncio
    async def test_mood_summary(self, service):
        text = await service.mood_summary("chat:1")
        assert text.startswith("Overall mood:")

    @pytest.mark.asyncio
    async def test_stale_decay_does_not_overwrite_interaction(self, state_db, clock):
        store = PausingStore(state_db)
        service = AffectService(AffectEngine(clock=clock), store, clock=clock)
        await service.apply_interaction("chat:1", signal(0.8, 0.9, "joy"))
        clock.advance(10 * 3600)

        # a mood read loads the old row, then an interaction lands before it writes
        store.pause_next = True
        reader = asyncio.create_task(service.mood_summary("chat:1"))
        await store.loaded.wait()
        update = await service.apply_interaction("chat:1", signal(-0.8, 0.9, "sadness"))
        assert update.applied
        store.release.set()
        await reader

        persisted, last = await store.load("chat:1")
        assert persisted["sadness"] == pytest.approx(update.updated["sadness"])
        assert last == clock()

    @pytest.mark.asyncio
    async def test_read_after_lost_race_reports_newer_state(self, state_db, clock):
        store = PausingStore(state_db)
        service = AffectService(AffectEngine(clock=clock), store, clock=clock)
        await service.apply_interaction("chat:1", signal(0.8, 0.9, "joy"))
        clock.advance(10 * 3600)

        store.pause_next = True
        reader = asyncio.create_task(service.current_state("chat:1"))
        await store.loaded.wait()
        update = await service.apply_interaction("chat:1", signal(-0.8, 0.9, "sadness"))
        store.release.set()
        seen = await reader
        assert seen["sadness"] == pytest.approx(update.updated["sadness"])

