"""Rich formatting helpers for the CLI.

Rich auto-detects TTY and degrades gracefully when piped (no ANSI codes).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape
from rich.table import Table

if TYPE_CHECKING:
    from merkle_aggregation.exceptions import CleanupError
    from merkle_aggregation.orchestrator import AggregationResult


def get_console(stderr: bool = False) -> Console:
    """Create a Rich Console that auto-detects TTY for graceful pipe degradation."""
    return Console(stderr=stderr)


def format_result(result: AggregationResult, console: Console) -> None:
    """Display the aggregate root, depth and chunk count."""
    tree = result.tree
    table = Table(show_header=False, box=None, pad_edge=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Root hash", f"[yellow]{tree.root.hash_hex}[/yellow]")
    for column, balance in enumerate(tree.root.balances):
        table.add_row(f"Balance {column}", f"[green]{balance}[/green]")
    table.add_row("Depth", str(tree.depth))
    table.add_row("Chunks", str(result.chunk_count))
    table.add_row("Entries", str(sum(len(m.entries) for m in tree.mini_trees)))
    console.print(table)
    if result.cleanup_error is not None:
        format_cleanup_warning(result.cleanup_error, console)


def format_cleanup_warning(error: CleanupError, console: Console) -> None:
    """Display worker teardown failures."""
    console.print(
        f"[yellow]Warning:[/yellow] {escape(str(error))}", highlight=False
    )


def format_error(message: str, console: Console) -> None:
    """Display an error message."""
    console.print(f"[red]Error:[/red] {escape(message)}", highlight=False)
