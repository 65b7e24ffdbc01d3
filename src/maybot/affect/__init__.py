"""
affect/ — maybot Mood Model

Public API:
    from maybot.affect import AffectService, AffectEngine, EmotionalSignal

Component overview:
    model    emotion list, personality profile, coupling rules, signal shape
    engine   pure decay / delta / coupling / summary functions + cooldown guard
    store    emotional_state persistence (one row per scope and emotion)
    service  engine + store: lazy decay on read, persisted updates
"""

from maybot.affect.engine import AffectEngine, summarize
from maybot.affect.model import (
    EMOTIONS,
    AffectUpdate,
    EmotionalSignal,
    EmotionalState,
    PersonalityProfile,
)
from maybot.affect.service import AffectService
from maybot.affect.store import EmotionStore

__all__ = [
    "AffectEngine",
    "AffectService",
    "AffectUpdate",
    "EmotionStore",
    "EmotionalSignal",
    "EmotionalState",
    "EMOTIONS",
    "PersonalityProfile",
    "summarize",
]
