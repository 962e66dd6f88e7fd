"""CLI renderer for Tern."""

from __future__ import annotations

import threading

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.text import Text

from tern.events import OutboundKind, OutboundMessage


class Renderer:
    """CLI renderer using Rich for terminal output."""

    def __init__(self, console: Console | None = None) -> None:
        self.console: Console = console or Console()
        self._prompt_session: PromptSession[str] | None = None
        self._print_lock = threading.Lock()

    def info(self, message: str) -> None:
        self._print(message)

    def error(self, message: str) -> None:
        self._print(Text.assemble(("Error: ", "bold red"), message))

    def welcome(self, model: str, workspace: str, session_id: str) -> None:
        self._print("[bold blue]tern[/bold blue] interactive mode (Ctrl+D or 'exit' to quit)")
        self._print(f"[bold]Model:[/bold] [magenta]{model}[/magenta]")
        self._print(f"[bold]Workspace:[/bold] [cyan]{workspace}[/cyan]")
        self._print(f"[bold]Session:[/bold] [green]{session_id}[/green]")

    def outbound(self, message: OutboundMessage) -> None:
        """Render one outbound bus message."""
        match message.kind:
            case OutboundKind.NOTICE:
                self._print(Text(message.text, style="dim"))
            case OutboundKind.ERROR:
                self.error(message.text)
            case _:
                self._print(Text.assemble(("tern: ", "bold yellow"), message.text))

    async def get_user_input(self) -> str:
        if self._prompt_session is None:
            self._prompt_session = PromptSession()
        with patch_stdout(raw=True):
            return await self._prompt_session.prompt_async("you> ")

    def _print(self, message: str | Text) -> None:
        with self._print_lock:
            self.console.print(message)
