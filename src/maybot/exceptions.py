"""
exceptions.py — maybot Unified Error Hierarchy

All maybot-specific exceptions live here. Every layer of the stack raises
typed subclasses of MayBotError — never bare Exception.

Import from here, not from individual modules:
    from maybot.exceptions import ProviderUnavailableError, DisallowedStatementError

Hierarchy:
    MayBotError
    ├── CredentialError
    │   └── ProviderUnavailableError
    ├── MalformedOutputError
    ├── ToolError
    │   ├── UnknownToolError
    │   └── ToolExecutionError
    │       ├── DisallowedStatementError
    │       └── QueryExecutionError
    ├── StoreError
    │   └── StoreNotInitializedError
    └── LLMError  (re-exported from brain for convenience)
        ├── LLMConnectionError
        ├── LLMRateLimitError
        ├── LLMTimeoutError
        ├── LLMContextError
        └── LLMInvalidRequestError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class MayBotError(Exception):
    """Base class for all maybot exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Credential pool
# ─────────────────────────────────────────────────────────────────────────────

class CredentialError(MayBotError):
    """Base for credential pool errors."""


class ProviderUnavailableError(CredentialError):
    """No usable credential was found after one full scan of the pool."""

    def __init__(self, total: int, message: str = "") -> None:
        self.total = total
        super().__init__(
            message or f"No usable provider credential (pool size: {total})."
        )


# ─────────────────────────────────────────────────────────────────────────────
# Model output
# ─────────────────────────────────────────────────────────────────────────────

class MalformedOutputError(MayBotError):
    """Model output could not be parsed into the expected structured shape."""

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        self.raw = raw
        super().__init__(message)


# ─────────────────────────────────────────────────────────────────────────────
# Tool layer
# ─────────────────────────────────────────────────────────────────────────────

class ToolError(MayBotError):
    """Base for all tool-related errors."""


class UnknownToolError(ToolError):
    """The model requested a tool name outside the known set."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown tool '{name}'")


class ToolExecutionError(ToolError):
    """A tool handler failed while executing."""


class DisallowedStatementError(ToolExecutionError):
    """SQL statement is not on the select/insert/update allow-list."""

    def __init__(self, statement: str, message: str = "") -> None:
        self.statement = statement
        super().__init__(
            message or "Only SELECT, INSERT, and UPDATE statements are allowed."
        )


class QueryExecutionError(ToolExecutionError):
    """The datastore rejected or failed a permitted statement."""


# ─────────────────────────────────────────────────────────────────────────────
# Persistence layer
# ─────────────────────────────────────────────────────────────────────────────

class StoreError(MayBotError):
    """Base for persistence errors."""


class StoreNotInitializedError(StoreError):
    """Database.init() has not been called before first use."""


# ─────────────────────────────────────────────────────────────────────────────
# LLM layer (defined in brain/, re-exported here)
# ─────────────────────────────────────────────────────────────────────────────

from maybot.brain.llm_client import (  # noqa: E402
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
    LLMTimeoutError,
)


__all__ = [
    "MayBotError",
    "CredentialError",
    "ProviderUnavailableError",
    "MalformedOutputError",
    "ToolError",
    "UnknownToolError",
    "ToolExecutionError",
    "DisallowedStatementError",
    "QueryExecutionError",
    "StoreError",
    "StoreNotInitializedError",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "LLMContextError",
    "LLMInvalidRequestError",
]
