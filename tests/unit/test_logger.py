"""
tests/unit/test_logger.py — Structured Logger Unit Tests

Run with:
    pytest tests/unit/test_logger.py -v
"""

from __future__ import annotations

import json
import logging

import structlog

from maybot.observability.logger import (
    bind_conversation,
    clear_conversation,
    get_logger,
    mask_secrets,
    setup_logging,
)

FAKE_KEY = "AIza" + "x" * 35


class TestMaskSecrets:
    def test_secret_fields_replaced(self):
        out = mask_secrets(None, "info", {"event": "pool.add", "api_key": "abc"})
        assert out["api_key"] == "***"

    def test_keys_inside_text_replaced(self):
        out = mask_secrets(None, "info", {"event": f"request failed for {FAKE_KEY}"})
        assert FAKE_KEY not in out["event"]
        assert "AIza***" in out["event"]

    def test_other_values_untouched(self):
        out = mask_secrets(None, "info", {"event": "pool.acquire", "label": "key_1", "n": 3})
        assert out == {"event": "pool.acquire", "label": "key_1", "n": 3}


class TestSetupLogging:
    def test_writes_json_with_conversation_context(self, tmp_path):
        setup_logging(level="DEBUG", log_dir=tmp_path, console_output=False)
        try:
            bind_conversation("42", "7")
            get_logger("maybot.test").info("turn.start", api_key=FAKE_KEY)
            clear_conversation()
            get_logger("maybot.test").info("turn.end")
            for handler in logging.getLogger().handlers:
                handler.flush()

            lines = (tmp_path / "maybot.log").read_text(encoding="utf-8").splitlines()
            first, second = (json.loads(line) for line in lines[-2:])
            assert first["event"] == "turn.start"
            assert first["chat_id"] == "42"
            assert first["api_key"] == "***"
            assert "chat_id" not in second
        finally:
            structlog.contextvars.clear_contextvars()
            structlog.reset_defaults()
            logging.basicConfig(handlers=[logging.NullHandler()], force=True)

    def test_noisy_libraries_quieted(self, tmp_path):
        setup_logging(level="DEBUG", log_dir=tmp_path, console_output=False)
        try:
            assert logging.getLogger("httpx").level == logging.WARNING
        finally:
            structlog.reset_defaults()
            logging.basicConfig(handlers=[logging.NullHandler()], force=True)
