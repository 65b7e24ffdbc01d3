"""
datastore/ — maybot SQLite Persistence

Public API:
    from maybot.datastore import Database, QueryExecutor, ConversationLog

Component overview:
    Database         aiosqlite connection, schema bootstrap, catalogue introspection
    QueryExecutor    allow-listed SQL execution with an audit trail
    ConversationLog  chat message history
    STATE_SCHEMA     DDL for the engine-owned state database
"""

from maybot.datastore.conversation_log import ConversationLog
from maybot.datastore.database import ColumnInfo, Database, ForeignKeyInfo, QueryResult
from maybot.datastore.query_executor import QueryExecutor
from maybot.datastore.schema import STATE_SCHEMA

__all__ = [
    "Database",
    "QueryResult",
    "ColumnInfo",
    "ForeignKeyInfo",
    "QueryExecutor",
    "ConversationLog",
    "STATE_SCHEMA",
]
