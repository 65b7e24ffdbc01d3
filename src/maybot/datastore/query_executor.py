"""
datastore/query_executor.py — Schema Introspector & Query Executor

The narrow, safety-checked surface the SQL tools use:

  - list_tables / describe_table / inspect_schema : catalogue introspection
  - execute_sql : runs one parameterized statement from a hard allow-list

Flow for execute_sql:
  statement → allow-list check (select | insert | update, else reject)
            → placeholder normalisation ($1 → ?1)
            → Database.execute() with bound params
            → audit-log row for every non-select success
            → on failure: sql_error audit row, then re-raise

The allow-list runs before the datastore is touched. Audit rows go to the
state database, out of reach of the statements being audited.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any, Callable, Optional, Sequence

from maybot.datastore.database import Database, QueryResult
from maybot.exceptions import DisallowedStatementError, QueryExecutionError
from maybot.observability.logger import get_logger

log = get_logger(__name__)

ALLOWED_VERBS = ("select", "insert", "update")

_VERB_RE = re.compile(r"^(select|insert|update)\b")
_TARGET_TABLE_RE = re.compile(
    r"^(?:insert\s+(?:or\s+\w+\s+)?into|update(?:\s+or\s+\w+)?)\s+[\"`\[]?(\w+)",
    re.IGNORECASE,
)
_DOLLAR_PARAM_RE = re.compile(r"\$(\d+)")


def statement_verb(query: str) -> Optional[str]:
    """Return the allowed leading verb of `query`, or None if it is not allowed."""
    match = _VERB_RE.match(query.strip().lower())
    return match.group(1) if match else None


def determine_action_type(query: str, failed: bool = False) -> str:
    """
    Audit action label: "<verb>:<table>" for mutating statements
    (e.g. "insert:debts"), "select" for reads, "sql_error" for failures.
    """
    if failed:
        return "sql_error"
    verb = statement_verb(query) or "unknown"
    if verb == "select":
        return "select"
    match = _TARGET_TABLE_RE.match(query.strip())
    return f"{verb}:{match.group(1).lower()}" if match else verb


def normalise_placeholders(query: str) -> str:
    """
    Rewrite PostgreSQL-style $1, $2 … placeholders to SQLite's ?1, ?2 …,
    leaving anything inside single-quoted string literals untouched.
    """
    out: list[str] = []
    for i, chunk in enumerate(query.split("'")):
        # even chunks are outside literals; '' escapes split into empty odd chunks
        out.append(_DOLLAR_PARAM_RE.sub(r"?\1", chunk) if i % 2 == 0 else chunk)
    return "'".join(out)


class QueryExecutor:
    """
    Runs model-issued SQL against the application database.

    Usage:
        executor = QueryExecutor(app_db, audit_db)
        result = await executor.execute_sql(
            "UPDATE debts SET paid = 1 WHERE id = $1", ["7"],
            reason="User said the debt was settled", actor="user:42",
        )
    """

    def __init__(
        self,
        database: Database,
        audit_database: Database,
        clock: Callable[[], float] = time.time,
    ):
        self._db = database
        self._audit = audit_database
        self._clock = clock

    # ── Introspection ─────────────────────────────────────────────────────────

    async def list_tables(self) -> list[str]:
        return await self._db.list_tables()

    async def describe_table(self, table_name: str) -> dict[str, Any]:
        columns = await self._db.describe_table(table_name)
        fks = await self._db.foreign_keys(table_name)
        return {
            "table_name": table_name,
            "columns": [c.to_dict() for c in columns],
            "foreign_keys": [fk.to_dict() for fk in fks],
        }

    async def inspect_schema(self) -> dict[str, Any]:
        tables = {}
        for name in await self._db.list_tables():
            tables[name] = [c.to_dict() for c in await self._db.describe_table(name)]
        return {"tables": tables, "table_count": len(tables)}

    # ── Execution ─────────────────────────────────────────────────────────────

    async def execute_sql(
        self,
        query: str,
        params: Optional[Sequence[Any]] = None,
        *,
        reason: str = "",
        actor: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> QueryResult:
        """
        Execute one allow-listed statement.

        Raises:
            DisallowedStatementError: statement verb is not select/insert/update.
            QueryExecutionError:      the datastore rejected the statement.
        """
        params = list(params or [])
        verb = statement_verb(query)
        if verb is None:
            log.warning("query.rejected", statement=query[:200], actor=actor)
            raise DisallowedStatementError(query)

        sql = normalise_placeholders(query.strip())
        start = self._clock()
        try:
            result = await self._db.execute(sql, params)
        except Exception as e:
            log.error("query.failed", verb=verb, error=str(e), actor=actor)
            await self._write_audit(
                action_type=determine_action_type(query, failed=True),
                query=query, params=params, result=None,
                reason=reason, actor=actor, chat_id=chat_id, error=str(e),
            )
            raise QueryExecutionError(f"{type(e).__name__}: {e}") from e

        log.info(
            "query.executed",
            verb=verb,
            row_count=result.row_count,
            duration_ms=round((self._clock() - start) * 1000, 1),
            actor=actor,
        )

        if verb != "select":
            await self._write_audit(
                action_type=determine_action_type(query),
                query=query,
                params=params,
                result={"row_count": result.row_count, "last_insert_id": result.last_insert_id},
                reason=reason,
                actor=actor,
                chat_id=chat_id,
            )
        return result

    async def _write_audit(
        self,
        *,
        action_type: str,
        query: str,
        params: list[Any],
        result: Optional[dict[str, Any]],
        reason: str,
        actor: Optional[str],
        chat_id: Optional[str],
        error: Optional[str] = None,
    ) -> None:
        await self._audit.execute(
            """INSERT INTO action_logs
               (actor, chat_id, action_type, statement, params, result, reason, error, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                actor,
                chat_id,
                action_type,
                query,
                json.dumps(params, default=str),
                json.dumps(result) if result is not None else None,
                reason,
                error,
                self._clock(),
            ),
        )
        log.debug("query.audited", action_type=action_type, actor=actor)
