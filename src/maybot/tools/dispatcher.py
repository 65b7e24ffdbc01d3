"""
tools/dispatcher.py — Tool Dispatcher

The single routing surface between the model's plan and tool execution.

Flow:
  ToolCall → ToolDispatcher.dispatch()
    → Name lookup against the closed ToolName set
    → Argument validation (per-tool pydantic model)
    → Handler execution (async, with timeout)
    → Normalise + truncate content
    → ToolResult (success or error, never an exception)

Failures of any kind, including disallowed SQL and constraint violations,
come back as ToolResult(success=False) so the model can adapt its plan.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from maybot.affect.engine import summarize
from maybot.affect.model import EmotionalSignal
from maybot.affect.service import AffectService
from maybot.datastore.query_executor import QueryExecutor
from maybot.exceptions import MayBotError, UnknownToolError
from maybot.observability.logger import get_logger
from maybot.tools.types import (
    ARGUMENT_MODELS,
    AnalyzeInteractionArgs,
    DescribeTableArgs,
    ExecuteSqlArgs,
    ToolCall,
    ToolContext,
    ToolName,
    ToolResult,
)

log = get_logger(__name__)

# Max output size fed back to the model; longer results are truncated
MAX_RESULT_CHARS = 8_000

DEFAULT_TIMEOUT_SECONDS = 30.0


class ToolDispatcher:
    """
    Routes tool calls to the query executor or the affect service.

    Usage:
        dispatcher = ToolDispatcher(executor, affect_service)
        result = await dispatcher.dispatch(ToolCall(name="list_tables"), context)
    """

    def __init__(
        self,
        executor: QueryExecutor,
        affect: AffectService,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_result_chars: int = MAX_RESULT_CHARS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._executor = executor
        self._affect = affect
        self.timeout_seconds = timeout_seconds
        self.max_result_chars = max_result_chars
        self._clock = clock

    async def dispatch(self, call: ToolCall, context: ToolContext) -> ToolResult:
        """
        Dispatch a tool call through the full pipeline.

        Returns:
            ToolResult (always — never raises except on cancellation).
        """
        start = self._clock()
        log.info("tool.dispatch", tool=call.name, arg_keys=sorted(call.args))

        # ── Step 1: Closed-set lookup ─────────────────────────────────────────
        tool = ToolName.parse(call.name)
        if tool is None:
            log.warning("tool.unknown", tool=call.name)
            return ToolResult.error(
                call.name,
                f"Unknown tool '{call.name}'. Available tools: {[t.value for t in ToolName]}",
            )

        # ── Step 2: Argument validation ───────────────────────────────────────
        try:
            args = ARGUMENT_MODELS[tool].model_validate(call.args)
        except ValidationError as e:
            return ToolResult.error(call.name, f"Invalid parameters: {_format_validation(e)}")

        # ── Step 3: Execute with timeout ──────────────────────────────────────
        try:
            raw_result = await asyncio.wait_for(
                self._run(tool, args, context),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.error("tool.timeout", tool=call.name, timeout_seconds=self.timeout_seconds)
            return ToolResult.error(
                call.name,
                f"Tool '{call.name}' timed out after {self.timeout_seconds}s",
                duration_ms=self._elapsed_ms(start),
            )
        except MayBotError as e:
            log.warning("tool.failed", tool=call.name, error=str(e), error_type=type(e).__name__)
            return ToolResult.error(call.name, str(e), duration_ms=self._elapsed_ms(start))
        except Exception as e:
            log.error("tool.execution_error", tool=call.name, error=str(e), exc_info=True)
            return ToolResult.error(
                call.name,
                f"{type(e).__name__}: {e}",
                duration_ms=self._elapsed_ms(start),
            )

        # ── Step 4: Normalise and truncate ────────────────────────────────────
        duration_ms = self._elapsed_ms(start)
        content = _truncate(_normalise_result(raw_result), self.max_result_chars)
        log.info(
            "tool.success",
            tool=call.name,
            duration_ms=duration_ms,
            result_chars=len(content),
        )
        return ToolResult.ok(call.name, content, duration_ms=duration_ms)

    async def _run(self, tool: ToolName, args: BaseModel, ctx: ToolContext) -> Any:
        if tool is ToolName.LIST_TABLES:
            tables = await self._executor.list_tables()
            return {"tables": tables, "count": len(tables)}

        elif tool is ToolName.DESCRIBE_TABLE:
            assert isinstance(args, DescribeTableArgs)
            return await self._executor.describe_table(args.table_name)

        elif tool is ToolName.INSPECT_SCHEMA:
            return await self._executor.inspect_schema()

        elif tool is ToolName.EXECUTE_SQL:
            assert isinstance(args, ExecuteSqlArgs)
            result = await self._executor.execute_sql(
                args.query,
                args.params,
                reason=args.reason,
                actor=ctx.actor,
                chat_id=ctx.chat_id,
            )
            return {
                "rows": result.rows,
                "row_count": result.row_count,
                "last_insert_id": result.last_insert_id,
            }

        elif tool is ToolName.ANALYZE_INTERACTION:
            assert isinstance(args, AnalyzeInteractionArgs)
            signal = EmotionalSignal.model_validate(args.model_dump())
            update = await self._affect.apply_interaction(ctx.affect_scope, signal, actor=ctx.actor)
            payload = update.to_dict()
            payload["summary"] = summarize(update.updated)
            payload["message"] = (
                "Emotional state updated." if update.applied
                else "Emotional state unchanged: the previous update was too recent."
            )
            return payload

        raise UnknownToolError(tool.value)

    def _elapsed_ms(self, start: float) -> float:
        return round((self._clock() - start) * 1000, 1)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _format_validation(err: ValidationError) -> str:
    parts = []
    for item in err.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "args"
        parts.append(f"'{loc}': {item['msg']}")
    return "; ".join(parts)


def _normalise_result(result: Any) -> str:
    """Convert any tool return value to JSON text."""
    if result is None:
        return "{}"
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=2, ensure_ascii=False, default=str)


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return (
        text[:max_chars]
        + f"\n\n[Output truncated — {len(text) - max_chars} chars omitted. "
        f"Total: {len(text)} chars]"
    )
