"""
affect/model.py — Affect Data Models

The fixed emotion vocabulary, the personality profile that scales how
signals and decay apply, and the static coupling table.

EmotionalState is a plain dict[str, float] over EMOTIONS. Values live in
[0.0, 1.0] with 0.5 as neutral; the key set never grows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, Field, field_validator

EMOTIONS: tuple[str, ...] = (
    "joy",
    "sadness",
    "anger",
    "fear",
    "trust",
    "disgust",
    "affection",
    "hurt",
    "playfulness",
    "neediness",
    "warmth",
    "excitement",
)

NEUTRAL = 0.5

EmotionalState = dict[str, float]


def neutral_state() -> EmotionalState:
    return {name: NEUTRAL for name in EMOTIONS}


# ─────────────────────────────────────────────────────────────────────────────
# Personality
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PersonalityProfile:
    sensitivity: float = 0.75
    forgiveness_rate: float = 0.4
    rumination: float = 0.7
    optimism: float = 0.65
    social_dependency: float = 0.85
    max_delta_per_interaction: float = 0.15
    update_cooldown_ms: int = 1000

    @classmethod
    def from_settings(cls, settings) -> "PersonalityProfile":
        a = settings.affect
        return cls(
            sensitivity=a.sensitivity,
            forgiveness_rate=a.forgiveness_rate,
            rumination=a.rumination,
            optimism=a.optimism,
            social_dependency=a.social_dependency,
            max_delta_per_interaction=a.max_delta_per_interaction,
            update_cooldown_ms=a.update_cooldown_ms,
        )


DEFAULT_PERSONALITY = PersonalityProfile()


@dataclass(frozen=True)
class DecayConfig:
    base_rate: float = 0.05     # per hour
    neutral: float = NEUTRAL
    min_step: float = 0.001


DEFAULT_DECAY = DecayConfig()


# ─────────────────────────────────────────────────────────────────────────────
# Coupling
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CouplingRule:
    source: str
    target: str
    strength: float


def _rules(source: str, **targets: float) -> list[CouplingRule]:
    return [CouplingRule(source, target, strength) for target, strength in targets.items()]


COUPLING_RULES: tuple[CouplingRule, ...] = tuple(
    _rules("joy", sadness=-0.6, anger=-0.5, playfulness=0.7, warmth=0.6)
    + _rules("sadness", joy=-0.7, hurt=0.6, neediness=0.5, playfulness=-0.6, warmth=-0.4)
    + _rules("anger", trust=-0.8, affection=-0.6, hurt=0.5, warmth=-0.7, sadness=0.3)
    + _rules("fear", trust=-0.7, neediness=0.5, playfulness=-0.5)
    + _rules("trust", fear=-0.6, anger=-0.5, warmth=0.7, affection=0.6, playfulness=0.5)
    + _rules("affection", anger=-0.7, disgust=-0.6, warmth=0.8, playfulness=0.5)
    + _rules("hurt", trust=-0.7, affection=-0.6, neediness=0.6, warmth=-0.5, sadness=0.5, anger=0.4)
    + _rules("playfulness", sadness=-0.5, anger=-0.4, joy=0.6, trust=0.3)
    + _rules("neediness", trust=-0.3, warmth=-0.3)
    + _rules("warmth", anger=-0.6, disgust=-0.5, affection=0.7, fear=-0.4, joy=0.4)
    + _rules("excitement", sadness=-0.5, playfulness=0.7, joy=0.6)
)


# ─────────────────────────────────────────────────────────────────────────────
# Signals and results
# ─────────────────────────────────────────────────────────────────────────────


class EmotionalSignal(BaseModel):
    """Transient input that perturbs the state, usually emitted by the model."""
    valence: float = Field(..., ge=-1.0, le=1.0)
    intensity: float = Field(..., ge=0.0, le=1.0)
    target_emotions: list[str] = Field(default_factory=list)
    context: Optional[str] = None

    @field_validator("target_emotions")
    @classmethod
    def _known_emotions(cls, v: list[str]) -> list[str]:
        normalised = [name.strip().lower() for name in v]
        unknown = [name for name in normalised if name not in EMOTIONS]
        if unknown:
            raise ValueError(
                f"unknown emotion(s) {unknown}; valid names: {list(EMOTIONS)}"
            )
        # keep first occurrence order, drop duplicates
        return list(dict.fromkeys(normalised))


@dataclass
class AffectUpdate:
    previous: EmotionalState
    updated: EmotionalState
    applied: bool = True
    changes: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "previous_state": {k: round(v, 3) for k, v in self.previous.items()},
            "updated_state": {k: round(v, 3) for k, v in self.updated.items()},
            "changes": {k: round(v, 3) for k, v in self.changes.items()},
            "applied": self.applied,
        }
