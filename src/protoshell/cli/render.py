"""Terminal rendering and input for ProtoShell."""

from __future__ import annotations

import os
import threading
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import CompleteEvent, Completer, Completion
from prompt_toolkit.document import Document
from prompt_toolkit.history import InMemoryHistory as PromptHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console

from protoshell.core.jobs import Job
from protoshell.core.types import ExecutionResult, JobStatus


class CommandCompleter(Completer):
    """Completes command names and aliases at the start of the line."""

    def __init__(self, complete: Callable[[str], list[str]]) -> None:
        self._complete = complete

    def get_completions(self, document: Document, complete_event: CompleteEvent) -> Iterable[Completion]:
        text = document.text_before_cursor.lstrip()
        if "|" in text:
            text = text.rsplit("|", 1)[1].lstrip()
        for name in self._complete(text):
            yield Completion(name, start_position=-len(text))


class Renderer:
    """CLI renderer using Rich for terminal output."""

    def __init__(self, complete: Callable[[str], list[str]] | None = None, home: str | None = None) -> None:
        self.console: Console = Console()
        self._home = home or os.path.expanduser("~")
        completer = CommandCompleter(complete) if complete is not None else None
        self._prompt_session: PromptSession[str] = PromptSession(history=PromptHistory(), completer=completer)
        self._print_lock = threading.Lock()

    def _print(self, message: str, *, markup: bool = True, style: str | None = None) -> None:
        with self._print_lock:
            self.console.print(message, markup=markup, highlight=False, style=style)

    def welcome(self, version: str) -> None:
        self._print(f"[bold blue]ProtoShell[/bold blue] v{version} - type [cyan]help[/cyan] for commands, "
                    "[cyan]exit[/cyan] to quit")

    def prompt_text(self, cwd: str, attached: str | None = None) -> str:
        if attached:
            return f"[{attached}] > "
        if cwd == self._home or cwd.startswith(self._home + os.sep):
            cwd = "~" + cwd[len(self._home) :]
        return f"{cwd} $ "

    async def get_user_input(self, cwd: str, attached: str | None = None) -> str:
        return await self._prompt_session.prompt_async(self.prompt_text(cwd, attached))

    def output_guard(self) -> AbstractContextManager[None]:
        """Keep background output from corrupting the prompt line."""
        return patch_stdout()

    def info(self, message: str) -> None:
        self._print(message, markup=False)

    def error(self, message: str) -> None:
        with self._print_lock:
            self.console.print("[bold red]Error:[/bold red] ", end="")
            self.console.print(message, markup=False, highlight=False)

    def clear(self) -> None:
        self.console.clear()

    def result(self, result: ExecutionResult) -> None:
        """Render the outcome of one executed line."""
        if result.output.strip():
            self._print(result.output.rstrip("\n"), markup=False)
        if not result.success:
            self.error(result.error_message or f"exit code {result.exit_code}")
            if result.exit_code not in (0, 1):
                self._print(f"[dim](exit code {result.exit_code})[/dim]")

    def job_finished(self, job: Job) -> None:
        style = "green" if job.status is JobStatus.COMPLETED else "red"
        self._print(f"[{job.id}] {job.status.value} {job.line}", markup=False, style=style)

    def session_output(self, text: str) -> None:
        self._print(text.rstrip("\n"), markup=False)

    def session_error(self, text: str) -> None:
        self._print(text.rstrip("\n"), markup=False, style="red")
