"""CLI commands for groupbot."""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime
from pathlib import Path

import typer

from groupbot import __logo__, __version__
from groupbot.config.loader import load_config
from groupbot.config.schema import Config
from groupbot.errors import ConfigError, PersistenceError
from groupbot.logging import setup_logging
from groupbot.memory.chat_memory import ChatMemory
from groupbot.memory.store import MemoryStore

app = typer.Typer(
    name="groupbot",
    help=f"{__logo__} groupbot - LLM chat companion for Telegram groups",
    no_args_is_help=True,
)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to config.json (default: $GROUPBOT_CONFIG or ./config.json)")


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"{__logo__} groupbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(None, "--version", "-v", callback=version_callback, is_eager=True),
) -> None:
    """groupbot - LLM chat companion for Telegram groups."""


def _load_config_or_exit(path: Path | None) -> Config:
    try:
        return load_config(path)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def _store(config: Config) -> MemoryStore:
    return MemoryStore(config.memory.snapshot_path)


def _format_ms(value: int) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M")


@app.command()
def run(
    config_path: Path | None = ConfigOption,
    json_logs: bool = typer.Option(True, "--json-logs/--console-logs", help="Log format"),
    log_level: str = typer.Option("INFO", "--log-level", help="Log level"),
) -> None:
    """Start the bot."""
    from groupbot.service import BotService

    setup_logging(json_output=json_logs, level=log_level)
    config = _load_config_or_exit(config_path)
    if not config.telegram.resolved_token:
        typer.echo("Error: telegram.token is not configured", err=True)
        raise typer.Exit(1)

    service = BotService(config)

    async def _main() -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, lambda: asyncio.ensure_future(service.stop()))
            except NotImplementedError:
                # add_signal_handler is unavailable on Windows event loops
                pass
        await service.run()

    typer.echo(f"{__logo__} Starting groupbot as {', '.join(config.names)}...")
    try:
        asyncio.run(_main())
    except PersistenceError as e:
        typer.echo(f"Error: {e}: {e.__cause__}", err=True)
        raise typer.Exit(1) from e


@app.command()
def chats(config_path: Path | None = ConfigOption) -> None:
    """List chats stored in the memory snapshot."""
    config = _load_config_or_exit(config_path)
    memory = _store(config).load()
    if not memory.chats:
        typer.echo("No chats in memory.")
        return
    for chat_id, chat in sorted(memory.chats.items()):
        title = chat.info.title or chat.info.username or "-"
        typer.echo(
            f"{chat_id}\t{chat.info.type}\t{title}\t"
            f"messages={len(chat.history)}\tnotes={len(chat.notes)}\tlast_use={_format_ms(chat.last_use)}"
        )


@app.command()
def notes(
    chat_id: int = typer.Argument(..., help="Chat id"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Print the notes kept for a chat."""
    config = _load_config_or_exit(config_path)
    memory = _store(config).load()
    chat = memory.chats.get(chat_id)
    if chat is None:
        typer.echo(f"Unknown chat: {chat_id}", err=True)
        raise typer.Exit(1)
    if not chat.notes:
        typer.echo("No notes yet.")
        return
    for note in chat.notes:
        typer.echo(f"- {note}")


@app.command()
def forget(
    chat_id: int = typer.Argument(..., help="Chat id"),
    config_path: Path | None = ConfigOption,
) -> None:
    """Clear a chat's history in the memory snapshot (stop the bot first)."""
    config = _load_config_or_exit(config_path)
    store = _store(config)
    memory = store.load()
    if chat_id not in memory.chats:
        typer.echo(f"Unknown chat: {chat_id}", err=True)
        raise typer.Exit(1)
    ChatMemory(memory, chat_id).clear()
    try:
        store.save(memory)
    except PersistenceError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    typer.echo(f"Forgot history of chat {chat_id}.")


if __name__ == "__main__":
    app()
