"""
observability/logger.py — maybot Structured Logger

structlog on top of stdlib logging. Every record goes to maybot.log as JSON;
stderr gets either JSON or the coloured dev renderer. Values that look like
provider API keys are masked before any renderer sees them.

    setup_logging(level="INFO", log_dir="./data/logs")   # once, at startup
    log = get_logger(__name__)
    log.info("pool.acquire", label="key_1", requests_this_minute=3)
"""

from __future__ import annotations

import logging
import logging.handlers
import re
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

LOG_FILE_NAME = "maybot.log"

# google-genai and its HTTP stack are chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "google_genai")

# Google API keys: "AIza" followed by 35 url-safe characters
_API_KEY_RE = re.compile(r"AIza[0-9A-Za-z_\-]{35}")
_SECRET_FIELDS = frozenset({"api_key", "secret", "key_value"})


def mask_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    """structlog processor: hide API keys in field values and free text."""
    for field, value in event_dict.items():
        if field in _SECRET_FIELDS and value:
            event_dict[field] = "***"
        elif isinstance(value, str) and "AIza" in value:
            event_dict[field] = _API_KEY_RE.sub("AIza***", value)
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        mask_secrets,
    ]


def _formatter(renderer: Any, pre_chain: list[Any]) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=pre_chain,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 20 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Route structlog and stdlib records to a rotating JSON file and, optionally,
    to stderr. Safe to call again: existing root handlers are replaced.

    Args:
        level:          DEBUG, INFO, WARNING, ERROR or CRITICAL.
        log_dir:        Created if missing; holds maybot.log and its rotations.
        json_format:    Render stderr as JSON instead of the coloured dev format.
        console_output: Emit to stderr at all. stdout stays free for the REPL.
        max_bytes:      Rotation threshold for maybot.log.
        backup_count:   Rotated files kept.
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    threshold = getattr(logging, level.upper(), logging.INFO)
    pre_chain = _pre_chain()

    to_file = logging.handlers.RotatingFileHandler(
        directory / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    to_file.setFormatter(_formatter(structlog.processors.JSONRenderer(), pre_chain))
    handlers: list[logging.Handler] = [to_file]

    if console_output:
        renderer = (
            structlog.processors.JSONRenderer()
            if json_format
            else structlog.dev.ConsoleRenderer(colors=True)
        )
        to_stderr = logging.StreamHandler(sys.stderr)
        to_stderr.setFormatter(_formatter(renderer, pre_chain))
        handlers.append(to_stderr)

    for handler in handlers:
        handler.setLevel(threshold)
    logging.basicConfig(level=threshold, handlers=handlers, force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(threshold, logging.WARNING))

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "maybot", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """Named structlog logger, pre-bound with initial_values when given."""
    bound = structlog.get_logger(name)
    return bound.bind(**initial_values) if initial_values else bound


def bind_conversation(chat_id: str, user_id: Optional[str] = None) -> None:
    """Tag every log line in the current task (and tasks it spawns) with the chat."""
    structlog.contextvars.bind_contextvars(chat_id=chat_id, user_id=user_id)


def clear_conversation() -> None:
    structlog.contextvars.unbind_contextvars("chat_id", "user_id")
