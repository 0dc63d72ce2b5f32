"""Console output helpers built on rich."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Formats user-facing output for the CLI and the sync engine.

    Informational output is suppressed in quiet mode. Errors always go
    to stderr. In JSON mode only ``output_json`` writes to stdout.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)

    def _silent(self) -> bool:
        return self.quiet or self.json_output

    def print(self, message: str = "") -> None:
        if not self._silent():
            self.console.print(message)

    def info(self, message: str) -> None:
        if not self._silent():
            self.console.print(message)

    def success(self, message: str) -> None:
        if not self._silent():
            self.console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        if not self._silent():
            self.err_console.print(f"[yellow]{message}[/yellow]")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]{message}[/red]")

    def progress_message(self, message: str) -> None:
        if not self._silent():
            self.console.print(f"[dim]{message}[/dim]")

    def output_json(self, data: Any) -> None:
        self.console.print_json(json.dumps(data, default=str))

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a two-column summary table.

        Args:
            title: Table title
            items: (label, value) rows
        """
        if self._silent():
            return
        table = Table(title=title, show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for label, value in items:
            table.add_row(label, value)
        self.console.print(table)
