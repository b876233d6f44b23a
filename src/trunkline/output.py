"""Styled user-facing messages.

Status lines go to stderr and results to stdout, both through ``rich``. Rich
decides on colour: only for terminals, never under ``NO_COLOR``, always under
``FORCE_COLOR``. ``CLICOLOR_FORCE`` is honoured here as well.
"""

from __future__ import annotations

import os
from typing import TextIO

from rich.console import Console as RichConsole
from rich.console import RenderableType
from rich.text import Text

ERROR_EMOJI = "❌"
WARNING_EMOJI = "🟡"
HINT_EMOJI = "💡"
SUCCESS_EMOJI = "✅"
PROGRESS_EMOJI = "🔄"


def _rich_console(file: TextIO | None, *, stderr: bool) -> RichConsole:
    force = True if os.environ.get("CLICOLOR_FORCE", "0") not in ("", "0") else None
    return RichConsole(
        file=file,
        stderr=stderr,
        force_terminal=force,
        soft_wrap=True,
        highlight=False,
        emoji=False,
    )


class Console:
    """Writes styled status lines to stderr and plain results to stdout."""

    def __init__(self, stream: TextIO | None = None, out: TextIO | None = None) -> None:
        self._err = _rich_console(stream, stderr=True)
        self._out = _rich_console(out, stderr=False)

    def _status(self, emoji: str, style: str, message: str) -> None:
        self._err.print(Text(f"{emoji} {message}", style=style))

    def success(self, message: str) -> None:
        self._status(SUCCESS_EMOJI, "green", message)

    def progress(self, message: str) -> None:
        self._status(PROGRESS_EMOJI, "cyan", message)

    def warning(self, message: str) -> None:
        self._status(WARNING_EMOJI, "yellow", message)

    def hint(self, message: str) -> None:
        self._status(HINT_EMOJI, "dim", message)

    def error(self, message: str, hint: str | None = None) -> None:
        self._status(ERROR_EMOJI, "bold red", message)
        if hint:
            self.hint(hint)

    def detail(self, text: str) -> None:
        """Indented command output shown beneath a progress line."""

        for line in text.splitlines():
            self._err.print(Text(f"  {line}", style="dim"))

    def result(self, text: str) -> None:
        self._out.print(Text(text))

    def render(self, renderable: RenderableType) -> None:
        """Print a rich renderable (a table, say) as a result."""

        self._out.print(renderable)


__all__ = ["Console"]
