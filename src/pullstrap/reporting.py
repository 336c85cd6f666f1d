"""Operator-facing console output with severity-coloured tags."""
from __future__ import annotations

from dataclasses import dataclass, field

from rich.console import Console
from rich.markup import escape

_TAGS = {
    "info": "[green]\\[INFO][/green]",
    "warn": "[yellow]\\[WARN][/yellow]",
    "error": "[red]\\[ERROR][/red]",
}


@dataclass(slots=True)
class Reporter:
    """Print tagged messages to a rich console."""

    console: Console = field(default_factory=Console)

    def info(self, message: str) -> None:
        """Print an informational message."""
        self._emit("info", message)

    def warn(self, message: str) -> None:
        """Print a warning."""
        self._emit("warn", message)

    def error(self, message: str) -> None:
        """Print an error."""
        self._emit("error", message)

    def raw(self, text: str) -> None:
        """Print *text* verbatim (public keys, unit names) without markup."""
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)

    def _emit(self, level: str, message: str) -> None:
        self.console.print(f"{_TAGS[level]} {escape(message)}", highlight=False)


__all__ = ["Reporter"]
