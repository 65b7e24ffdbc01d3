"""
main.py — maybot Entry Point

Usage:
    python -m maybot chat                       # local console chat, default settings
    python -m maybot keys                       # credential pool status
    python -m maybot --log-level DEBUG chat     # verbose logging
    python -m maybot --config path/to/config.yaml chat
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from maybot.agent.schemas import InboundMessage
from maybot.config.settings import ConfigError, load_settings
from maybot.credentials.pool import PoolStatus
from maybot.exceptions import MayBotError
from maybot.kernel.kernel import AgentKernel
from maybot.observability.logger import get_logger, setup_logging

_CONSOLE_CHAT_ID = "console"


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="maybot",
        description="maybot — tool-using chat agent with a pooled Gemini backend",
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["chat", "keys"],
        default="chat",
        help="'chat' — talk to the agent in this terminal. 'keys' — show credential pool health.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $MAYBOT_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file holding GEMINI_API_KEY* (default: ./.env)",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace, console: Console):
    """
    Load .env and config, validate fully, and set up logging.
    Returns (settings, log), or None after printing the problem.
    """
    load_dotenv(dotenv_path=Path(args.env_file))

    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        console.print(f"\n[red]❌  Config validation failed:[/]\n\n{problems}\n")
        return None
    except OSError as exc:
        console.print(f"\n[red]❌  Failed to load config: {type(exc).__name__}: {exc}[/]\n")
        return None

    try:
        settings.validate_all()
    except ConfigError as exc:
        console.print(str(exc), markup=False)
        return None

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    return settings, get_logger("maybot.main")


# ─────────────────────────────────────────────────────────────────────────────
# Console chat
# ─────────────────────────────────────────────────────────────────────────────

class ConsoleChat:
    """ChatClient that renders the agent's messages in the terminal."""

    def __init__(self, console: Console, agent_name: str):
        self._console = console
        self._name = agent_name

    async def send_message(self, chat_id: str, text: str) -> None:
        self._console.print(f"[bold magenta]{self._name}[/] › {text}")

    async def send_typing_indicator(self, chat_id: str) -> None:
        self._console.print(f"[dim]{self._name} is typing…[/]", end="\r")


async def run_chat(settings, console: Console) -> int:
    chat = ConsoleChat(console, settings.agent.name)
    kernel = await AgentKernel.build(settings, chat=chat)
    loop = asyncio.get_running_loop()
    console.print(f"[dim]✓ {settings.agent.name} is online. Type 'exit' to quit.[/]\n")
    try:
        while True:
            try:
                text = await loop.run_in_executor(None, input, "you › ")
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye.[/]")
                break
            text = text.strip()
            if not text:
                continue
            if text.lower() in ("exit", "quit"):
                console.print("[dim]Goodbye.[/]")
                break
            result = await kernel.orchestrator.respond(
                InboundMessage(chat_id=_CONSOLE_CHAT_ID, text=text, user_id="console")
            )
            console.print(
                f"[dim]({result.status.value}, {result.iterations} iteration(s), "
                f"{result.tool_calls} tool call(s), {result.duration_ms:.0f} ms)[/]\n"
            )
    finally:
        await kernel.shutdown()
    return 0


# ─────────────────────────────────────────────────────────────────────────────
# Key status
# ─────────────────────────────────────────────────────────────────────────────

def render_pool_status(status: PoolStatus) -> Table:
    table = Table(title=f"Credential pool — {status.usable_keys}/{status.total_keys} usable")
    table.add_column("Label", style="bold")
    table.add_column("Active")
    table.add_column("Usable")
    table.add_column("Minute", justify="right")
    table.add_column("Day", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Blocked")
    for key in status.keys:
        marker = " ◀" if key.label == status.current_label else ""
        table.add_row(
            f"{key.label}{marker}",
            "yes" if key.is_active else "no",
            "[green]yes[/]" if key.usable else "[red]no[/]",
            f"{key.requests_this_minute}/{key.rpm_limit}",
            f"{key.requests_today}/{key.rpd_limit}",
            str(key.failure_count),
            "yes" if key.is_blocked else "",
        )
    return table


async def run_keys(settings, console: Console) -> int:
    kernel = await AgentKernel.build(settings)
    try:
        console.print(render_pool_status(await kernel.pool.status()))
    finally:
        await kernel.shutdown()
    return 0


async def async_main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    console = Console()
    booted = bootstrap(args, console)
    if booted is None:
        return 1
    settings, log = booted
    log.info("maybot.starting", command=args.command, model=settings.llm.model)

    try:
        if args.command == "keys":
            return await run_keys(settings, console)
        return await run_chat(settings, console)
    except MayBotError as e:
        log.error("maybot.startup_failed", error=str(e), error_type=type(e).__name__)
        console.print(f"\n[red]❌  {e}[/]\n")
        return 1


def main() -> None:
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
