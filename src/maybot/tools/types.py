"""
tools/types.py — Tool System Data Models

The closed set of tools the model may call, their typed argument models, and
the call/result envelopes that travel between the orchestrator and the
dispatcher.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from maybot.affect.model import EmotionalSignal


# ─────────────────────────────────────────────────────────────────────────────
# Tool names
# ─────────────────────────────────────────────────────────────────────────────


class ToolName(str, Enum):
    LIST_TABLES = "list_tables"
    DESCRIBE_TABLE = "describe_table"
    INSPECT_SCHEMA = "inspect_schema"
    EXECUTE_SQL = "execute_sql"
    ANALYZE_INTERACTION = "analyze_interaction"

    @classmethod
    def parse(cls, name: str) -> Optional["ToolName"]:
        try:
            return cls(name.strip())
        except ValueError:
            return None


# Tools that may run concurrently within one planning step. Membership is a
# maintenance invariant: a tool belongs here only if it has no side effects and
# no ordering dependency on other tools. Revisit whenever a tool is added.
READ_ONLY_TOOLS: frozenset[ToolName] = frozenset({
    ToolName.LIST_TABLES,
    ToolName.DESCRIBE_TABLE,
    ToolName.INSPECT_SCHEMA,
})


def all_read_only(names: list[str]) -> bool:
    """True when every name is a known read-only tool."""
    return all(ToolName.parse(n) in READ_ONLY_TOOLS for n in names)


# ─────────────────────────────────────────────────────────────────────────────
# Argument models
# ─────────────────────────────────────────────────────────────────────────────


class NoArgs(BaseModel):
    model_config = {"extra": "ignore"}


class DescribeTableArgs(BaseModel):
    model_config = {"extra": "ignore"}
    table_name: str = Field(..., min_length=1)


class ExecuteSqlArgs(BaseModel):
    model_config = {"extra": "ignore"}
    query: str = Field(..., min_length=1)
    params: list[Any] = Field(default_factory=list)
    reason: str = ""

    @field_validator("params", mode="before")
    @classmethod
    def _params_list(cls, v: Any) -> Any:
        if v is None:
            return []
        # models sometimes send the array JSON-encoded
        if isinstance(v, str):
            try:
                decoded = json.loads(v)
            except ValueError:
                return [v]
            return decoded if isinstance(decoded, list) else [decoded]
        return v

    @field_validator("params")
    @classmethod
    def _scalar_params(cls, v: list[Any]) -> list[Any]:
        for item in v:
            if isinstance(item, (dict, list)):
                raise ValueError("params must be scalars (string, number, boolean or null)")
        return v


class AnalyzeInteractionArgs(EmotionalSignal):
    model_config = {"extra": "ignore"}


ARGUMENT_MODELS: dict[ToolName, type[BaseModel]] = {
    ToolName.LIST_TABLES: NoArgs,
    ToolName.DESCRIBE_TABLE: DescribeTableArgs,
    ToolName.INSPECT_SCHEMA: NoArgs,
    ToolName.EXECUTE_SQL: ExecuteSqlArgs,
    ToolName.ANALYZE_INTERACTION: AnalyzeInteractionArgs,
}


# ─────────────────────────────────────────────────────────────────────────────
# Runtime call / result types
# ─────────────────────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """A tool invocation requested by the model's plan, before execution."""
    name: str
    args: dict[str, Any] = Field(default_factory=dict)

    @field_validator("args", mode="before")
    @classmethod
    def _args_dict(cls, v: Any) -> Any:
        # models sometimes send the object JSON-encoded, or "null"
        if isinstance(v, str):
            if not v.strip():
                return {}
            try:
                v = json.loads(v)
            except ValueError:
                return {"_raw": v}
        if v is None:
            return {}
        # leave anything else to per-tool argument validation at dispatch
        return v if isinstance(v, dict) else {"_raw": v}


class ToolResult(BaseModel):
    """The result of a tool call, fed back to the model as a tool-result turn."""
    name: str
    content: str
    success: bool = True
    duration_ms: float = 0.0

    @classmethod
    def ok(cls, name: str, content: str, duration_ms: float = 0.0) -> "ToolResult":
        return cls(name=name, content=content, success=True, duration_ms=duration_ms)

    @classmethod
    def error(cls, name: str, message: str, duration_ms: float = 0.0) -> "ToolResult":
        return cls(name=name, content=f"Error: {message}", success=False, duration_ms=duration_ms)


class ToolContext(BaseModel):
    """Who and where a tool call runs for; carried into audit and affect logs."""
    chat_id: str
    user_id: Optional[str] = None
    user_message: Optional[str] = None
    affect_scope: str = "global"

    @property
    def actor(self) -> Optional[str]:
        return f"user:{self.user_id}" if self.user_id else None
