"""
agent/context_builder.py — System Context Builder

Assembles the system instruction for each of the two model calls in a turn:

    planning   : persona → tool catalogue → planning rules → mood → time
    finalizing : persona → reply rules → mood → time

Persona copy is supplied by the deployer (agent.persona_file); a short
neutral default is used otherwise.
"""

from __future__ import annotations

import datetime as _dt
from pathlib import Path
from typing import Callable, Optional

from maybot.observability.logger import get_logger
from maybot.tools.definitions import render_catalogue

log = get_logger(__name__)

_DEFAULT_PERSONA = (
    "You are {agent_name}, a friendly assistant living in a group chat. You keep "
    "track of shared data (debts, plans, notes) in a SQL database you can inspect "
    "and update with tools. Write short, casual chat messages."
)

_PLANNING_TEMPLATE = """\
{persona}

## Tools
{catalogue}

## Planning rules
- Decide whether you need tools before you can answer the latest user message.
- Never assume the database structure: inspect it before writing SQL.
- Pass every value through params; never build SQL by concatenating text.
- Tool results from earlier steps are already in the conversation; do not
  repeat a call whose result you already have.
- When you have enough information, answer with needs_tools=false and an empty
  tools_to_call list.
- Answer ONLY with JSON: {{"needs_tools": bool, "tools_to_call": [{{"name": str,
  "args": "<JSON object as string>"}}], "reasoning": str}}

## Current mood
{mood}

## Current UTC time
{utc_time}"""

_FINAL_TEMPLATE = """\
{persona}

## Reply rules
- Reply to the latest user message using the tool results in the conversation.
- Split the answer into one to four short chat messages.
- delay is the pause in milliseconds before each message (300–3000).
- Never reveal SQL, table names or raw tool output.
- Answer ONLY with JSON: {{"type": "reply", "messages": [{{"text": str,
  "delay": str, "sticker": str|null}}], "intent": str}}

## Current mood
{mood}

## Current UTC time
{utc_time}"""


class ContextBuilder:
    """Builds planning and final-reply system instructions."""

    def __init__(
        self,
        agent_name: str = "Mây",
        persona: Optional[str] = None,
        clock: Callable[[], _dt.datetime] = lambda: _dt.datetime.now(_dt.timezone.utc),
    ):
        self._agent_name = agent_name
        self._persona = (persona or _DEFAULT_PERSONA).replace("{agent_name}", agent_name)
        self._clock = clock
        self._catalogue = render_catalogue()

    @classmethod
    def from_settings(cls, settings) -> "ContextBuilder":
        persona = None
        persona_file = settings.agent.persona_file
        if persona_file:
            path = Path(persona_file)
            if path.exists():
                persona = path.read_text(encoding="utf-8")
            else:
                log.warning("context.persona_missing", path=str(path))
        return cls(agent_name=settings.agent.name, persona=persona)

    def planning_instruction(self, mood: str) -> str:
        return _PLANNING_TEMPLATE.format(
            persona=self._persona,
            catalogue=self._catalogue,
            mood=mood,
            utc_time=self._now(),
        )

    def final_instruction(self, mood: str) -> str:
        return _FINAL_TEMPLATE.format(
            persona=self._persona,
            mood=mood,
            utc_time=self._now(),
        )

    def _now(self) -> str:
        return self._clock().strftime("%Y-%m-%d %H:%M UTC")
