"""
affect/engine.py — Affect Engine

Pure functions over EmotionalState plus a small stateful guard.

  decay(state, hours, personality)       drift every emotion toward neutral
  apply_signal(state, signal, ...)       primary delta + coupling + clamp
  summarize(state)                       short mood text for the reply prompt
  AffectEngine.update(state, signal)     apply_signal behind a per-scope cooldown

Nothing in this module touches storage; AffectService does load/persist.

Usage:
    engine = AffectEngine(DEFAULT_PERSONALITY)
    result = engine.update(state, EmotionalSignal(valence=0.8, intensity=0.9,
                                                  target_emotions=["joy"]))
    print(summarize(result.updated))
"""

from __future__ import annotations

import math
import time
from typing import Callable, Iterable

from maybot.affect.model import (
    COUPLING_RULES,
    DEFAULT_DECAY,
    DEFAULT_PERSONALITY,
    EMOTIONS,
    NEUTRAL,
    AffectUpdate,
    CouplingRule,
    DecayConfig,
    EmotionalSignal,
    EmotionalState,
    PersonalityProfile,
)
from maybot.observability.logger import get_logger

log = get_logger(__name__)

# A source has to move at least this much before its coupling rules fire.
COUPLING_THRESHOLD = 0.01
COUPLING_FACTOR = 0.3

# Positive feelings land a little harder and negative ones a little softer
# the more optimistic the personality is.
POSITIVE_OPTIMISM_GAIN = 0.3
NEGATIVE_OPTIMISM_DAMPING = 0.2

_POSITIVE_MOOD = ("joy", "affection", "playfulness")
_NEGATIVE_MOOD = ("sadness", "anger")

_MOOD_LABELS = (
    (0.65, "Very positive and warm"),
    (0.55, "Positive and friendly"),
    (0.45, "Neutral and balanced"),
    (0.35, "Slightly guarded"),
)
_MOOD_FALLBACK = "Cautious or distant"


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _complete(state: EmotionalState) -> EmotionalState:
    return {name: clamp(state.get(name, NEUTRAL)) for name in EMOTIONS}


# ─────────────────────────────────────────────────────────────────────────────
# Decay
# ─────────────────────────────────────────────────────────────────────────────


def decay(
    state: EmotionalState,
    hours_elapsed: float,
    personality: PersonalityProfile = DEFAULT_PERSONALITY,
    config: DecayConfig = DEFAULT_DECAY,
) -> EmotionalState:
    """
    Move every emotion toward neutral.

    The step is `distance × base_rate × hours × forgiveness / rumination`,
    at least `min_step`, and never larger than the remaining distance.
    """
    current = _complete(state)
    if hours_elapsed <= 0:
        return current

    factor = config.base_rate * hours_elapsed * personality.forgiveness_rate / personality.rumination
    result: EmotionalState = {}
    for name, value in current.items():
        distance = config.neutral - value
        if distance == 0:
            result[name] = value
            continue
        step = max(abs(distance) * factor, config.min_step)
        if step >= abs(distance):
            result[name] = config.neutral
        else:
            result[name] = clamp(value + math.copysign(step, distance))
    return result


# ─────────────────────────────────────────────────────────────────────────────
# Update
# ─────────────────────────────────────────────────────────────────────────────


def compute_delta(
    valence: float,
    intensity: float,
    personality: PersonalityProfile = DEFAULT_PERSONALITY,
) -> float:
    delta = valence * intensity * personality.sensitivity
    if delta > 0:
        delta *= 1 + personality.optimism * POSITIVE_OPTIMISM_GAIN
    elif delta < 0:
        delta *= 1 - personality.optimism * NEGATIVE_OPTIMISM_DAMPING
    limit = personality.max_delta_per_interaction
    return clamp(delta, -limit, limit)


def apply_signal(
    state: EmotionalState,
    signal: EmotionalSignal,
    personality: PersonalityProfile = DEFAULT_PERSONALITY,
    rules: Iterable[CouplingRule] = COUPLING_RULES,
) -> AffectUpdate:
    """
    Apply one signal: the primary delta to each target emotion, then one
    round of coupling driven by those primary moves, then a final clamp.
    """
    previous = _complete(state)
    updated = dict(previous)

    delta = compute_delta(signal.valence, signal.intensity, personality)
    for name in signal.target_emotions:
        if name in updated:
            updated[name] = clamp(updated[name] + delta)

    source_deltas = {name: updated[name] - previous[name] for name in EMOTIONS}
    for rule in rules:
        moved = source_deltas.get(rule.source, 0.0)
        if abs(moved) < COUPLING_THRESHOLD or rule.target not in updated:
            continue
        updated[rule.target] += moved * rule.strength * COUPLING_FACTOR

    updated = {name: clamp(value) for name, value in updated.items()}
    changes = {
        name: updated[name] - previous[name]
        for name in EMOTIONS
        if abs(updated[name] - previous[name]) > 1e-9
    }
    return AffectUpdate(previous=previous, updated=updated, applied=True, changes=changes)


# ─────────────────────────────────────────────────────────────────────────────
# Summary
# ─────────────────────────────────────────────────────────────────────────────


def dominant_emotions(state: EmotionalState, n: int = 3) -> list[tuple[str, float]]:
    """The `n` emotions furthest from neutral, strongest first."""
    current = _complete(state)
    ranked = sorted(current.items(), key=lambda kv: abs(kv[1] - NEUTRAL), reverse=True)
    return ranked[:n]


def mood_valence(state: EmotionalState) -> float:
    current = _complete(state)
    positive = sum(current[n] for n in _POSITIVE_MOOD) / len(_POSITIVE_MOOD)
    negative = sum(current[n] for n in _NEGATIVE_MOOD) / len(_NEGATIVE_MOOD)
    return NEUTRAL + positive - negative


def interpret_mood(state: EmotionalState) -> str:
    valence = mood_valence(state)
    for threshold, label in _MOOD_LABELS:
        if valence > threshold:
            return label
    return _MOOD_FALLBACK


def summarize(state: EmotionalState) -> str:
    """Short natural-language mood descriptor for the final-reply prompt."""
    lines = [f"Overall mood: {interpret_mood(state)}."]
    strong = [(name, value) for name, value in dominant_emotions(state) if abs(value - NEUTRAL) >= 0.02]
    if strong:
        parts = [
            f"{name} {'high' if value > NEUTRAL else 'low'} ({round(value * 100)}%)"
            for name, value in strong
        ]
        lines.append("Strongest feelings: " + ", ".join(parts) + ".")
    else:
        lines.append("No feeling stands out right now.")
    lines.append("Let these feelings colour your tone only; they never reduce how helpful you are.")
    return "\n".join(lines)


# ─────────────────────────────────────────────────────────────────────────────
# Stateful wrapper
# ─────────────────────────────────────────────────────────────────────────────


class AffectEngine:
    """
    Applies signals behind a per-scope cooldown.

    A second update for the same scope within `update_cooldown_ms` of the last
    applied one returns the state unchanged with `applied=False`.
    """

    def __init__(
        self,
        personality: PersonalityProfile = DEFAULT_PERSONALITY,
        *,
        decay_config: DecayConfig = DEFAULT_DECAY,
        rules: Iterable[CouplingRule] = COUPLING_RULES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.personality = personality
        self.decay_config = decay_config
        self._rules = tuple(rules)
        self._clock = clock
        self._last_applied: dict[str, float] = {}

    def decay(self, state: EmotionalState, hours_elapsed: float) -> EmotionalState:
        return decay(state, hours_elapsed, self.personality, self.decay_config)

    def update(
        self,
        state: EmotionalState,
        signal: EmotionalSignal,
        scope: str = "global",
    ) -> AffectUpdate:
        now = self._clock()
        last = self._last_applied.get(scope)
        if last is not None and (now - last) * 1000 < self.personality.update_cooldown_ms:
            log.info(
                "affect.update_skipped",
                scope=scope,
                since_last_ms=round((now - last) * 1000),
            )
            current = _complete(state)
            return AffectUpdate(previous=current, updated=dict(current), applied=False)

        result = apply_signal(state, signal, self.personality, self._rules)
        self._last_applied[scope] = now
        log.info(
            "affect.updated",
            scope=scope,
            valence=signal.valence,
            intensity=signal.intensity,
            targets=signal.target_emotions,
            changed=len(result.changes),
        )
        return result

    def summarize(self, state: EmotionalState) -> str:
        return summarize(state)
