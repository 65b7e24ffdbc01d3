"""
datastore/database.py — Async SQLite Datastore

A thin async wrapper over one aiosqlite connection. It serves two roles:

  - the *application* database the model inspects and mutates through the
    SQL tools (list_tables / describe_table / execute)
  - the *state* database holding engine-owned tables (see schema.py)

The connection runs in autocommit mode: every statement is its own atomic
transaction, so single-statement counter and state updates are applied
atomically by SQLite itself rather than by read-modify-write in Python.

Usage:
    db = Database("./data/app.db")
    await db.init()
    result = await db.execute("SELECT * FROM debts WHERE amount > ?", [100])
    tables = await db.list_tables()
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence

import aiosqlite

from maybot.exceptions import StoreError, StoreNotInitializedError
from maybot.observability.logger import get_logger

log = get_logger(__name__)

# lastrowid is per connection; only an insert that wrote a row owns it
_INSERT_RE = re.compile(r"^\s*(?:insert|replace)\b", re.IGNORECASE)


# ── Data classes ──────────────────────────────────────────────────────────────

@dataclass
class QueryResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    last_insert_id: Optional[int] = None


@dataclass
class ColumnInfo:
    name: str
    type: str
    nullable: bool
    default: Optional[str] = None
    primary_key: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "column_name": self.name,
            "data_type": self.type or "ANY",
            "is_nullable": self.nullable,
            "column_default": self.default,
            "primary_key": self.primary_key,
        }


@dataclass
class ForeignKeyInfo:
    column: str
    references_table: str
    references_column: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "column_name": self.column,
            "foreign_table": self.references_table,
            "foreign_column": self.references_column,
        }


# ── Main class ────────────────────────────────────────────────────────────────

class Database:
    """Async SQLite connection with schema bootstrap and catalogue introspection."""

    def __init__(self, db_path: str, schema: Optional[str] = None):
        self.db_path = db_path
        self._schema = schema
        self._db: Optional[aiosqlite.Connection] = None

    async def init(self) -> None:
        """Open the connection and create tables from the schema script, if any."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        if self._schema:
            await self._db.executescript(self._schema)
        log.info("database.initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        """Return the open connection or raise clearly if there is none."""
        if self._db is None:
            raise StoreNotInitializedError(
                f"Database at {self.db_path} is not initialised (or has been closed). "
                "Call `await db.init()` before use."
            )
        return self._db

    # ── Statements ────────────────────────────────────────────────────────────

    async def execute(self, sql: str, params: Sequence[Any] | dict[str, Any] = ()) -> QueryResult:
        """
        Run one parameterized statement and return its rows and affected count.

        Statements that produce rows (SELECT, or DML with RETURNING) have
        their rows materialised as plain dicts. last_insert_id is set only
        for an INSERT or REPLACE that wrote at least one row.
        """
        db = self._require_db()
        async with db.execute(sql, params) as cursor:
            rows: list[dict[str, Any]] = []
            if cursor.description:
                rows = [dict(r) for r in await cursor.fetchall()]
            row_count = cursor.rowcount if cursor.rowcount >= 0 else len(rows)
            last_id = None
            if row_count > 0 and _INSERT_RE.match(sql):
                last_id = cursor.lastrowid or None
        return QueryResult(rows=rows, row_count=row_count, last_insert_id=last_id)

    async def fetch_all(self, sql: str, params: Sequence[Any] | dict[str, Any] = ()) -> list[aiosqlite.Row]:
        db = self._require_db()
        async with db.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def fetch_one(self, sql: str, params: Sequence[Any] | dict[str, Any] = ()) -> Optional[aiosqlite.Row]:
        db = self._require_db()
        async with db.execute(sql, params) as cursor:
            return await cursor.fetchone()

    # ── Catalogue ─────────────────────────────────────────────────────────────

    async def list_tables(self) -> list[str]:
        """User tables, sorted. SQLite's internal sqlite_* tables are hidden."""
        rows = await self.fetch_all(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [r["name"] for r in rows]

    async def describe_table(self, table_name: str) -> list[ColumnInfo]:
        """
        Column metadata for one table. The name is checked against the
        catalogue first because PRAGMA arguments cannot be bound.
        """
        await self._require_known_table(table_name)
        rows = await self.fetch_all(f'PRAGMA table_info("{table_name}")')
        return [
            ColumnInfo(
                name=r["name"],
                type=r["type"],
                nullable=not r["notnull"],
                default=r["dflt_value"],
                primary_key=bool(r["pk"]),
            )
            for r in rows
        ]

    async def foreign_keys(self, table_name: str) -> list[ForeignKeyInfo]:
        await self._require_known_table(table_name)
        rows = await self.fetch_all(f'PRAGMA foreign_key_list("{table_name}")')
        return [
            ForeignKeyInfo(column=r["from"], references_table=r["table"], references_column=r["to"])
            for r in rows
        ]

    async def _require_known_table(self, table_name: str) -> None:
        if table_name not in await self.list_tables():
            raise StoreError(f"Table '{table_name}' does not exist")
