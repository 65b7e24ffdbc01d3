"""
Shared fixtures: a controllable clock, a recording sleep, temporary SQLite
databases and a scripted LLM client. Nothing here touches the network.
"""

from __future__ import annotations

from typing import Any, Optional, Union

import pytest

from maybot.brain.llm_client import BaseLLMClient
from maybot.brain.types import FinishReason, LLMConfig, LLMResponse, Message
from maybot.datastore.database import Database
from maybot.datastore.schema import STATE_SCHEMA

APP_SCHEMA = """
CREATE TABLE IF NOT EXISTS people (
    id    INTEGER PRIMARY KEY AUTOINCREMENT,
    name  TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS debts (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    debtor_id  INTEGER NOT NULL REFERENCES people(id),
    amount     REAL NOT NULL CHECK (amount > 0),
    note       TEXT
);
"""


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested sleeps and advances an optional clock instead of waiting."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds)


Scripted = Union[str, BaseException]


class ScriptedLLM(BaseLLMClient):
    """
    Returns scripted outputs in order. A string becomes the response text; an
    exception instance is raised. When the script runs out the last entry repeats.
    """

    def __init__(self, script: list[Scripted]):
        super().__init__()
        self.script = list(script)
        self.calls: list[dict[str, Any]] = []

    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        *,
        system_instruction: Optional[str] = None,
        response_schema: Optional[dict] = None,
    ) -> LLMResponse:
        self.calls.append({
            "messages": list(messages),
            "system_instruction": system_instruction,
            "response_schema": response_schema,
        })
        index = min(len(self.calls) - 1, len(self.script) - 1)
        item = self.script[index]
        if isinstance(item, BaseException):
            raise item
        return LLMResponse(content=item, finish_reason=FinishReason.STOP, model=config.model)

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
async def state_db(tmp_path):
    db = Database(str(tmp_path / "state.db"), schema=STATE_SCHEMA)
    await db.init()
    yield db
    await db.close()


@pytest.fixture
async def app_db(tmp_path):
    db = Database(str(tmp_path / "app.db"), schema=APP_SCHEMA)
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def scripted_llm():
    return ScriptedLLM
