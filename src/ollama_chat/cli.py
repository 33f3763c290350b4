"""Interactive terminal chat against an Ollama server."""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime
from pathlib import Path

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.table import Table

from ollama_chat import __version__
from ollama_chat.config import AppConfig, LogConfig, load_config
from ollama_chat.core.session import ChatSession
from ollama_chat.events.bus import EventBus
from ollama_chat.llm.client import OllamaClient
from ollama_chat.llm.models import ModelDirectory
from ollama_chat.memory.store import SessionStore
from ollama_chat.types import ChatEvent, EventType
from ollama_chat.ui.renderer import ConsoleRenderer

console = Console()
_logger = logging.getLogger(__name__)

_HELP = """
[bold]Commands:[/bold]
  /models          - List models installed on the server
  /model [name]    - Show or switch the model
  /clear           - Save this conversation and start a new one
  /history [id]    - List saved sessions, or show one
  /help            - Show this help
  /quit            - Exit

Ctrl-C while a reply is streaming cancels it.
"""


def setup_logging(log: LogConfig, verbose: bool) -> None:
    """Configure root logging once, from the ``log`` config section."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG)
        return
    if not log.enabled:
        logging.basicConfig(level=logging.WARNING)
        return
    path = Path(log.path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=str(path),
        level=getattr(logging, log.level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def handle_command(
    line: str,
    chat: ChatSession,
    directory: ModelDirectory,
    store: SessionStore | None,
) -> str | None:
    """Run a slash command.  Returns ``"quit"`` to leave the REPL."""
    cmd, _, arg = line.partition(" ")
    cmd = cmd.lower()
    arg = arg.strip()

    if cmd in ("/quit", "/exit", "/q"):
        return "quit"

    if cmd == "/help":
        console.print(_HELP)

    elif cmd == "/models":
        directory.invalidate()
        models, error = await directory.list_models()
        if error:
            console.print(f"[red]{error}[/red]")
            return None
        if not models:
            console.print("[dim]No models installed. Try `ollama pull <model>`.[/dim]")
        for name in models:
            marker = "*" if name == chat.model else " "
            console.print(f" {marker} {name}")

    elif cmd == "/model":
        if not arg:
            console.print(f"[bold]Model:[/bold] {chat.model}")
            return None
        if not await directory.has_model(arg):
            console.print(f"[yellow]'{arg}' is not installed on the server.[/yellow]")
            return None
        await chat.set_model(arg)

    elif cmd == "/clear":
        await chat.reset()

    elif cmd == "/history":
        if store is None:
            console.print("[dim]Chat history is disabled.[/dim]")
        elif arg:
            messages = store.load_session(arg)
            if not messages:
                console.print(f"[red]Session '{arg}' not found.[/red]")
            for m in messages:
                console.print(f"[bold]{m.role.value.upper()}:[/bold] {m.content}\n")
        else:
            table = Table(title="Saved sessions")
            table.add_column("ID", style="bold")
            table.add_column("When")
            table.add_column("Model")
            table.add_column("Msgs", justify="right")
            table.add_column("First prompt")
            for s in store.list_sessions():
                when = datetime.fromtimestamp(s.created_at).strftime("%Y-%m-%d %H:%M")
                table.add_row(s.session_id, when, s.model, str(s.message_count), s.preview)
            console.print(table)

    else:
        console.print(f"[red]Unknown command: {cmd}[/red] (try /help)")
    return None


async def run_turn(chat: ChatSession, prompt: str) -> None:
    """Send *prompt*; Ctrl-C cancels the reply instead of exiting."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, chat.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        await chat.send(prompt)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def repl(config: AppConfig, verbose: bool) -> None:
    client = OllamaClient.from_config(config)
    directory = ModelDirectory(client)
    store = SessionStore(config.history.db_path) if config.history.enabled else None
    bus = EventBus()
    renderer = ConsoleRenderer(console)
    chat = ChatSession.from_config(config, client, renderer, event_bus=bus, store=store)

    def _on_done(event: ChatEvent) -> None:
        usage = event.data.get("usage") or {}
        if usage:
            console.print(
                f"[dim]({usage.get('prompt_tokens', 0)} prompt / "
                f"{usage.get('completion_tokens', 0)} completion tokens)[/dim]"
            )

    def _on_saved(event: ChatEvent) -> None:
        console.print(f"[dim]Session saved: {event.data['session_id']}[/dim]")

    bus.subscribe(EventType.RESPONSE_DONE, _on_done)
    bus.subscribe(EventType.SESSION_SAVED, _on_saved)

    available, error = await client.probe()
    if available:
        console.print(f"[dim]Server: {client.base_url}[/dim]")
    else:
        console.print(f"[yellow]{error}[/yellow]")
    console.print(f"[dim]Model: {chat.model}[/dim]")
    console.print("[dim]Type /help for commands.[/dim]\n")

    history_path = Path("~/.ollama_chat/prompt_history").expanduser()
    history_path.parent.mkdir(parents=True, exist_ok=True)
    session: PromptSession[str] = PromptSession(history=FileHistory(str(history_path)))

    try:
        while True:
            try:
                line = (await session.prompt_async(HTML("<ansigreen><b>❯ </b></ansigreen>"))).strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye![/dim]")
                break
            if not line:
                continue

            try:
                if line.startswith("/"):
                    if await handle_command(line, chat, directory, store) == "quit":
                        console.print("[dim]Goodbye![/dim]")
                        break
                    continue
                await run_turn(chat, line)
            except Exception as e:
                console.print(f"[red]Error: {e}[/red]")
                if verbose:
                    console.print_exception()
    finally:
        await chat.close()
        await client.close()
        if store is not None:
            store.close()


@click.command()
@click.option("--config", "-c", "config_path", default=None,
              help="Path to ollama_chat.yaml (auto-detected from CWD or ~/.ollama_chat/)")
@click.option("--model", "-m", default=None, help="Model to chat with")
@click.option("--host", default=None, help="Ollama server host")
@click.option("--port", type=int, default=None, help="Ollama server port")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging to stderr")
@click.version_option(__version__, prog_name="ollama-chat")
def main(config_path: str | None, model: str | None, host: str | None,
         port: int | None, verbose: bool):
    """Chat with a local or remote Ollama model."""
    try:
        config, config_file = load_config(config_path)
    except FileNotFoundError as e:
        raise click.ClickException(str(e)) from e

    if model:
        config.ollama.model = model
    if host:
        config.ollama.server.host = host
    if port:
        config.ollama.server.port = port

    setup_logging(config.log, verbose)
    _logger.info("Starting ollama-chat v%s (config: %s)", __version__, config_file or "defaults")
    console.print(f"[bold cyan]ollama-chat[/bold cyan] [dim]v{__version__}[/dim]")
    if config_file:
        console.print(f"[dim]Config: {config_file}[/dim]")

    asyncio.run(repl(config, verbose))


if __name__ == "__main__":
    main()
