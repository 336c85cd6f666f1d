"""Operator prompts.

Provisioners never talk to a terminal directly; they receive a
:class:`Prompter`. :class:`TerminalPrompter` backs the interactive CLI and
:class:`ScriptedPrompter` replays a fixed list of answers (tests, unattended
health checks).
"""
from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from typing import Protocol

import typer

from .reporting import Reporter


class PromptExhaustedError(RuntimeError):
    """Raised when a scripted prompter runs out of answers."""


class Prompter(Protocol):
    """Source of operator decisions and input."""

    def confirm(self, question: str, *, default: bool = True) -> bool:
        """Return the operator's yes/no answer to *question*."""
        ...

    def ask(self, question: str, *, default: str | None = None) -> str:
        """Return a line of text; *default* is used for empty input."""
        ...

    def secret(self, question: str) -> str:
        """Return hidden input (no echo)."""
        ...


class TerminalPrompter:
    """Interactive prompter backed by typer/click."""

    def confirm(self, question: str, *, default: bool = True) -> bool:
        """Ask a ``[Y/n]`` question; invalid answers are re-asked by click."""
        return bool(typer.confirm(question, default=default))

    def ask(self, question: str, *, default: str | None = None) -> str:
        """Ask for a line of text, allowing empty input when no default exists."""
        if default is not None:
            value = typer.prompt(question, default=default, show_default=False)
        else:
            value = typer.prompt(question, default="", show_default=False)
        return str(value).strip()

    def secret(self, question: str) -> str:
        """Ask for hidden input; empty input is returned as an empty string."""
        value = typer.prompt(question, default="", hide_input=True, show_default=False)
        return str(value)


class ScriptedPrompter:
    """Prompter replaying pre-recorded answers in order.

    Confirmations consume ``bool`` answers, text prompts consume ``str``
    answers. An empty string given to :meth:`ask` falls back to the default,
    mirroring the terminal behaviour. When *decline_when_exhausted* is set, a
    confirmation with no answers left is declined instead of raising.
    """

    def __init__(
        self,
        answers: Iterable[bool | str] = (),
        *,
        decline_when_exhausted: bool = False,
    ) -> None:
        """Queue *answers* for replay."""
        self._answers: deque[bool | str] = deque(answers)
        self._decline_when_exhausted = decline_when_exhausted
        self.transcript: list[str] = []

    @property
    def remaining(self) -> int:
        """Return the number of answers not yet consumed."""
        return len(self._answers)

    def confirm(self, question: str, *, default: bool = True) -> bool:
        """Pop the next boolean answer."""
        self.transcript.append(question)
        if not self._answers and self._decline_when_exhausted:
            return False
        answer = self._next(question)
        if not isinstance(answer, bool):
            raise PromptExhaustedError(
                f"Expected a yes/no answer for {question!r}, got {answer!r}."
            )
        return answer

    def ask(self, question: str, *, default: str | None = None) -> str:
        """Pop the next text answer, applying *default* to empty input."""
        self.transcript.append(question)
        answer = self._next_text(question).strip()
        if not answer and default is not None:
            return default
        return answer

    def secret(self, question: str) -> str:
        """Pop the next text answer verbatim."""
        self.transcript.append(question)
        return self._next_text(question)

    def _next_text(self, question: str) -> str:
        answer = self._next(question)
        if not isinstance(answer, str):
            raise PromptExhaustedError(
                f"Expected a text answer for {question!r}, got {answer!r}."
            )
        return answer

    def _next(self, question: str) -> bool | str:
        if not self._answers:
            raise PromptExhaustedError(f"No scripted answer left for {question!r}.")
        return self._answers.popleft()


def ask_required(
    prompter: Prompter,
    question: str,
    *,
    on_empty: str,
    report: Reporter | None = None,
) -> str:
    """Ask *question* until a non-empty answer is given."""
    while True:
        value = prompter.ask(question).strip()
        if value:
            return value
        if report is not None:
            report.error(on_empty)


__all__ = [
    "PromptExhaustedError",
    "Prompter",
    "ScriptedPrompter",
    "TerminalPrompter",
    "ask_required",
]
