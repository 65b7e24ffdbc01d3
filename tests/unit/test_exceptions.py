"""
tests/unit/test_exceptions.py — Error Hierarchy Unit Tests

Run with:
    pytest tests/unit/test_exceptions.py -v
"""

from __future__ import annotations

import pytest

import maybot.exceptions as exc


class TestHierarchy:
    @pytest.mark.parametrize("child,parent", [
        (exc.ProviderUnavailableError, exc.CredentialError),
        (exc.UnknownToolError, exc.ToolError),
        (exc.DisallowedStatementError, exc.ToolExecutionError),
        (exc.QueryExecutionError, exc.ToolExecutionError),
        (exc.ToolExecutionError, exc.ToolError),
        (exc.StoreNotInitializedError, exc.StoreError),
        (exc.LLMRateLimitError, exc.LLMError),
        (exc.LLMTimeoutError, exc.LLMError),
    ])
    def test_parentage(self, child, parent):
        assert issubclass(child, parent)

    def test_maybot_errors_share_a_root(self):
        for name in ("CredentialError", "MalformedOutputError", "ToolError", "StoreError"):
            assert issubclass(getattr(exc, name), exc.MayBotError)

    def test_exports_resolve(self):
        for name in exc.__all__:
            assert isinstance(getattr(exc, name), type)

    def test_messages(self):
        assert "pool size: 3" in str(exc.ProviderUnavailableError(3))
        assert str(exc.UnknownToolError("rm_rf")) == "Unknown tool 'rm_rf'"
        assert exc.MalformedOutputError("bad", raw="{").raw == "{"
        assert exc.LLMRateLimitError("slow down").status_code == 429
