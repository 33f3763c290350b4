"""Render collaborators for the chat transcript."""

from __future__ import annotations

from typing import Protocol

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text


class Renderer(Protocol):
    """What the chat session needs from a UI.

    All methods are called on the event loop that owns the session, in
    the order the events happened.
    """

    def on_user_message(self, text: str) -> None: ...

    def on_assistant_delta(self, text: str) -> None: ...

    def on_assistant_final(self, full_text: str) -> None: ...

    def on_error(self, text: str) -> None: ...

    def on_system_notice(self, text: str) -> None: ...


class ConsoleRenderer:
    """Streams the transcript to a rich ``Console``.

    Deltas are written raw as they arrive.  With ``markdown=True`` the
    finished reply is re-rendered once as Markdown below the raw text.
    """

    def __init__(self, console: Console | None = None, markdown: bool = False) -> None:
        self.console = console or Console()
        self._markdown = markdown
        self._streaming = False

    def on_user_message(self, text: str) -> None:
        self.console.print(Text("--- USER ---", style="bold green"))
        self.console.print(Text(text))
        self.console.print()

    def on_assistant_delta(self, text: str) -> None:
        if not self._streaming:
            self.console.print(Text("--- ASSISTANT ---", style="bold cyan"))
            self._streaming = True
        self.console.print(Text(text), end="")

    def on_assistant_final(self, full_text: str) -> None:
        self._end_stream()
        if self._markdown and full_text:
            self.console.print(Markdown(full_text))
        self.console.print()

    def on_error(self, text: str) -> None:
        self._end_stream()
        self.console.print(Panel(text, title="Error", border_style="red"))

    def on_system_notice(self, text: str) -> None:
        self._end_stream()
        self.console.print(f"[dim]{text}[/dim]")

    def _end_stream(self) -> None:
        if self._streaming:
            self.console.print()
            self._streaming = False
