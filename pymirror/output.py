"""Console output formatting for the pymirror CLI."""

import json
from typing import Any

from rich.console import Console
from rich.markup import escape


class OutputFormatter:
    """Writes operator-facing messages to the terminal.

    Informational output goes to stdout, warnings and errors to stderr.
    When ``quiet`` is set only warnings and errors are shown; when
    ``json_output`` is set plain messages are suppressed in favour of
    :meth:`output_json`.
    """

    def __init__(self, json_output: bool = False, quiet: bool = False):
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console(highlight=False, soft_wrap=True, emoji=False)
        self.err_console = Console(
            stderr=True, highlight=False, soft_wrap=True, emoji=False
        )

    def _silenced(self) -> bool:
        return self.quiet or self.json_output

    def print(self, message: str = "") -> None:
        if not self._silenced():
            self.console.print(message, markup=False)

    def info(self, message: str) -> None:
        if not self._silenced():
            self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        if not self._silenced():
            self.console.print(f"[green]✓[/green] {escape(message)}")

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {escape(message)}")

    def output_json(self, data: Any) -> None:
        """Print data as JSON (always shown, even in quiet mode)."""
        self.console.print(
            json.dumps(data, indent=2, default=str), markup=False, soft_wrap=True
        )
