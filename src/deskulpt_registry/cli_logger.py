"""CLI output utilities for consistent messaging.

Besides the coloured status helpers, this module emits GitHub Actions
workflow commands (``::group::``, ``::endgroup::``, ``::notice::``) so that
CI logs fold per widget. Workflow commands are written raw, without rich
markup or wrapping, because the runner matches them by line prefix.
"""

from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.markup import escape

_console = Console()


def success(message: str) -> None:
    """Print a success message with green checkmark."""
    _console.print(f"[green]✓[/green] {escape(message)}")


def error(message: str) -> None:
    """Print an error message with red X."""
    _console.print(f"[red]✗[/red] {escape(message)}")


def warning(message: str) -> None:
    """Print a warning message with yellow exclamation."""
    _console.print(f"[yellow]![/yellow] {escape(message)}")


def info(message: str) -> None:
    """Print an info message (no prefix)."""
    _console.print(message)


def dim(message: str) -> None:
    """Print a dimmed message (for secondary info)."""
    _console.print(f"[dim]{escape(message)}[/dim]")


def raw(message: str) -> None:
    """Print a message verbatim: no markup, highlighting or wrapping."""
    _console.out(message, highlight=False)


def notice(message: str) -> None:
    """Emit a CI notice annotation."""
    raw(f"::notice::{message}")


@contextmanager
def group(title: str) -> Iterator[None]:
    """Fold everything printed inside the block under *title* in CI logs."""
    raw(f"::group::{title}")
    try:
        yield
    finally:
        raw("::endgroup::")
