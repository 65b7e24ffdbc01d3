"""
tools/definitions.py — Tool Catalogue

Human- and model-readable declarations for every ToolName. The planning
prompt embeds render_catalogue(); argument validation itself is done by the
pydantic models in tools/types.py.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field

from maybot.affect.model import EMOTIONS
from maybot.tools.types import READ_ONLY_TOOLS, ToolName


class ToolSpec(BaseModel):
    name: ToolName
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    @property
    def read_only(self) -> bool:
        return self.name in READ_ONLY_TOOLS


TOOL_SPECS: tuple[ToolSpec, ...] = (
    ToolSpec(
        name=ToolName.LIST_TABLES,
        description="List every table in the database.",
    ),
    ToolSpec(
        name=ToolName.DESCRIBE_TABLE,
        description="Show the columns, types, nullability and foreign keys of one table.",
        parameters={
            "type": "object",
            "properties": {
                "table_name": {"type": "string", "description": "Exact table name"},
            },
            "required": ["table_name"],
        },
    ),
    ToolSpec(
        name=ToolName.INSPECT_SCHEMA,
        description="Show every table with its columns in one call.",
    ),
    ToolSpec(
        name=ToolName.EXECUTE_SQL,
        description=(
            "Run one SELECT, INSERT or UPDATE statement. Other statements are rejected. "
            "Always pass values through params using $1, $2 … placeholders; never "
            "concatenate values into the query text. Explain the purpose in reason."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "SQL with $1, $2 … placeholders"},
                "params": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Positional values for the placeholders",
                },
                "reason": {"type": "string", "description": "Why this statement is needed"},
            },
            "required": ["query", "reason"],
        },
    ),
    ToolSpec(
        name=ToolName.ANALYZE_INTERACTION,
        description=(
            "Record how the user's message made you feel. valence is -1 (hurtful) "
            "to 1 (lovely), intensity 0 to 1."
        ),
        parameters={
            "type": "object",
            "properties": {
                "valence": {"type": "number"},
                "intensity": {"type": "number"},
                "target_emotions": {
                    "type": "array",
                    "items": {"type": "string", "enum": list(EMOTIONS)},
                },
                "context": {"type": "string"},
            },
            "required": ["valence", "intensity", "target_emotions"],
        },
    ),
)


def get_spec(name: ToolName) -> ToolSpec:
    for spec in TOOL_SPECS:
        if spec.name == name:
            return spec
    raise KeyError(name)


def render_catalogue() -> str:
    """Tool list for the planning system instruction."""
    blocks = []
    for spec in TOOL_SPECS:
        tag = " (read-only)" if spec.read_only else ""
        blocks.append(
            f"- {spec.name.value}{tag}: {spec.description}\n"
            f"  parameters: {json.dumps(spec.parameters, ensure_ascii=False)}"
        )
    return "\n".join(blocks)
