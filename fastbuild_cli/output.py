"""Output sink passed to every component that reports progress or errors."""

from __future__ import annotations

from typing import Optional

from rich.console import Console
from rich.markup import escape


class OutputSink:
    """Formats user-facing messages on rich consoles.

    Informational messages are blue, debug messages dim, errors red on
    stderr. Process output is printed verbatim.
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
        show_debug: bool = True,
    ) -> None:
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)
        self.show_debug = show_debug

    def output(self, message: str) -> None:
        self.console.print(message, markup=False, highlight=False, soft_wrap=True)

    def info(self, message: str) -> None:
        self.console.print(f"[blue]{escape(message)}[/blue]", soft_wrap=True)

    def debug(self, message: str) -> None:
        if self.show_debug:
            self.console.print(f"[dim]{escape(message)}[/dim]", soft_wrap=True)

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error: {escape(message)}[/red]", soft_wrap=True)

    def process_error(self, message: str) -> None:
        """Stderr line of a child process."""
        self.err_console.print(f"[red]{escape(message)}[/red]", soft_wrap=True)
