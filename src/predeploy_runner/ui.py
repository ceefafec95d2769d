"""Operator-facing surfaces: output channel, progress, prompts and settings.

The pre-deploy flow only talks to the protocols below. The console
implementations render with rich and log through loguru.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from pathlib import Path
from typing import Callable, Optional, Protocol, Sequence, TypeVar

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt

T = TypeVar("T")


class OutputChannel(Protocol):
    def append_log(self, message: str) -> None:
        ...


class ProgressReporter(Protocol):
    def with_progress(self, title: str, work: Callable[[], T]) -> T:
        ...


class Prompter(Protocol):
    def show_error_message(self, message: str, items: Sequence[str], *, modal: bool = True) -> Optional[str]:
        """Show an error with action buttons; return the chosen title or None if dismissed."""
        ...


class SettingsOpener(Protocol):
    def open_settings(self) -> None:
        ...


class LoguruOutputChannel:
    """Output channel that writes each line through loguru."""

    def __init__(self, name: str = "predeploy") -> None:
        self._logger = logger.bind(channel=name)

    def append_log(self, message: str) -> None:
        self._logger.info(message)


class RichProgressReporter:
    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console(stderr=True)

    def with_progress(self, title: str, work: Callable[[], T]) -> T:
        with self.console.status(title):
            return work()


class RichPrompter:
    """Render error dialogs as a rich panel followed by a choice prompt."""

    cancel_choice = "cancel"

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    def show_error_message(self, message: str, items: Sequence[str], *, modal: bool = True) -> Optional[str]:
        self.console.print(Panel(message, title="[bold red]Error[/bold red]", border_style="red"))
        if not modal:
            return None
        choices = [str(index) for index in range(1, len(items) + 1)]
        for choice, title in zip(choices, items):
            self.console.print(f"  [bold]{choice}[/bold]. {title}")
        self.console.print(f"  [bold]{self.cancel_choice}[/bold]. Close")
        try:
            answer = Prompt.ask(
                "Choose an action",
                choices=[*choices, self.cancel_choice],
                default=self.cancel_choice,
                console=self.console,
            )
        except (EOFError, KeyboardInterrupt):
            self.console.print()
            return None
        if answer in choices:
            return items[choices.index(answer)]
        return None


class EditorSettingsOpener:
    """Open a settings file in `$VISUAL`/`$EDITOR`, or print its location."""

    def __init__(self, path: Path, console: Optional[Console] = None) -> None:
        self.path = path
        self.console = console or Console()

    def open_settings(self) -> None:
        editor = os.environ.get("VISUAL") or os.environ.get("EDITOR")
        if not editor:
            self.console.print(f"Edit pre-deploy settings in [bold]{self.path}[/bold]")
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)
        logger.debug("Opening settings {} with {}", self.path, editor)
        try:
            subprocess.run([*shlex.split(editor), str(self.path)], check=False)
        except OSError as exc:
            logger.warning("Could not start editor {!r}: {}", editor, exc)
            self.console.print(f"Edit pre-deploy settings in [bold]{self.path}[/bold]")
