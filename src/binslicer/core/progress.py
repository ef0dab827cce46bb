"""Terminal feedback for long-running commands.

Everything here writes to stderr so ``--json`` output on stdout stays clean.

    status("Registered binary libfoo.so", style="success")
    with spinner("Running ritual Parser"):
        run_ritual(...)
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from rich.console import Console

if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger

_console = Console(stderr=True)

_STYLES = {
    "success": "[green]✓[/green] ",
    "error": "[red]✗[/red] ",
    "warning": "[yellow]![/yellow] ",
    "info": "  ",
    "none": "",
}

_console_state = threading.local()


def is_console_suppressed() -> bool:
    """True while a live spinner owns the terminal on this thread."""
    return getattr(_console_state, "suppressed", False)


@contextmanager
def suppress_console_logs() -> Iterator[None]:
    """Hold back console log lines; file handlers keep receiving records."""
    previous = is_console_suppressed()
    _console_state.suppressed = True
    try:
        yield
    finally:
        _console_state.suppressed = previous


def _get_logger() -> BoundLogger:
    from binslicer.core.logging import get_logger

    return get_logger("progress")


def _is_tty() -> bool:
    return sys.stderr.isatty()


def status(message: str, *, style: str = "info", indent: int = 0) -> None:
    """Print one styled line to stderr and mirror it to the debug log."""
    line = " " * indent + _STYLES.get(style, "") + message
    _console.print(line, highlight=False)
    _get_logger().debug("status", message=message, style=style)


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    word = singular if count == 1 else (plural or f"{singular}s")
    return f"{count} {word}"


@contextmanager
def spinner(message: str, *, indent: int = 0) -> Iterator[None]:
    """Show ``message`` while the block runs.

    On a terminal this is a live rich spinner with console logging held
    back; otherwise the message is printed once. Exceptions from the block
    propagate unchanged.
    """
    label = " " * indent + message
    if not _is_tty():
        _console.print(f"{label}...", highlight=False)
        yield
        return
    with suppress_console_logs(), _console.status(f"[cyan]{label}[/cyan]", spinner="dots"):
        yield
