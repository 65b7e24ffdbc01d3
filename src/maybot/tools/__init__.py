"""
tools/__init__.py — maybot Tool System

Public interface for the tool system.

Usage:
    from maybot.tools import ToolDispatcher, ToolCall, ToolContext

    dispatcher = ToolDispatcher(query_executor, affect_service)
    result = await dispatcher.dispatch(
        ToolCall(name="describe_table", args={"table_name": "debts"}),
        ToolContext(chat_id="42"),
    )
"""

from __future__ import annotations

from maybot.tools.definitions import TOOL_SPECS, ToolSpec, render_catalogue
from maybot.tools.dispatcher import ToolDispatcher
from maybot.tools.types import (
    READ_ONLY_TOOLS,
    ToolCall,
    ToolContext,
    ToolName,
    ToolResult,
    all_read_only,
)

__all__ = [
    "ToolDispatcher",
    "ToolCall",
    "ToolContext",
    "ToolName",
    "ToolResult",
    "ToolSpec",
    "TOOL_SPECS",
    "READ_ONLY_TOOLS",
    "all_read_only",
    "render_catalogue",
]
