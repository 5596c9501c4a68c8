"""Output formatting for the listsync CLI."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Prints human readable or JSON output depending on global CLI flags."""

    def __init__(self, json_output: bool = False, quiet: bool = False):
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console(highlight=False, soft_wrap=True)
        self.err_console = Console(stderr=True, highlight=False, soft_wrap=True)

    def print(self, message: str = "") -> None:
        """Print a message unless JSON output is active."""
        if not self.json_output:
            self.console.print(message, markup=False)

    def info(self, message: str) -> None:
        """Print an informational message (suppressed by --quiet)."""
        if self.quiet or self.json_output:
            return
        self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        if self.json_output:
            return
        self.console.print(message, style="green", markup=False)

    def warning(self, message: str) -> None:
        if self.json_output:
            return
        self.err_console.print(f"Warning: {message}", style="yellow", markup=False)

    def error(self, message: str) -> None:
        """Print an error; always shown, also in JSON mode."""
        self.err_console.print(f"Error: {message}", style="red", markup=False)

    def output_json(self, data: Any) -> None:
        """Print data as indented JSON."""
        self.console.print_json(json.dumps(data, default=str))

    def output_table(
        self,
        rows: list[dict[str, Any]],
        columns: list[str],
        headers: Optional[dict[str, str]] = None,
        title: Optional[str] = None,
    ) -> None:
        """Print rows as a table, or as a JSON array with --json.

        Args:
            rows: One dictionary per row
            columns: Keys to show, in order
            headers: Column display names (defaults to the keys)
            title: Optional table title
        """
        if self.json_output:
            self.output_json([{c: row.get(c) for c in columns} for row in rows])
            return

        headers = headers or {}
        table = Table(title=title)
        for column in columns:
            table.add_column(headers.get(column, column))
        for row in rows:
            table.add_row(
                *("" if row.get(c) is None else str(row.get(c)) for c in columns)
            )
        self.console.print(table)

    def print_summary(self, title: str, items: list[tuple[str, Any]]) -> None:
        """Print a titled list of label/value pairs."""
        if self.json_output:
            self.output_json({label: value for label, value in items})
            return
        if self.quiet:
            return
        self.console.print(f"\n{title}", style="bold", markup=False)
        self.console.print("-" * len(title), markup=False)
        width = max((len(label) for label, _ in items), default=0)
        for label, value in items:
            self.console.print(f"{label.ljust(width)}  {value}", markup=False)
