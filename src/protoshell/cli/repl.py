"""Interactive read-eval-print loop."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from protoshell import __version__
from protoshell.builtins.commands import CLEAR_MARKER
from protoshell.core.jobs import Job
from protoshell.errors import ShellError
from protoshell.sessions.manager import SessionHandlers
from protoshell.shell import Shell

from .render import Renderer

DETACH_SEQUENCE = "~."
EXIT_COMMANDS = frozenset({"exit", "quit"})


@dataclass
class _Attachment:
    session_id: str | None = None


async def run_repl(shell: Shell, renderer: Renderer) -> None:
    """Read lines until EOF or `exit`, executing each one on `shell`."""
    attachment = _Attachment()

    def _on_close(code: int) -> None:
        renderer.info(f"Session closed (exit code {code})")
        attachment.session_id = None

    def _on_job_end(sender: Any, *, job: Job, **_: Any) -> None:
        renderer.job_finished(job)

    shell.session_handlers = SessionHandlers(
        on_output=renderer.session_output,
        on_error=renderer.session_error,
        on_close=_on_close,
    )
    disconnect = shell.events.subscribe("job_end", _on_job_end)
    renderer.welcome(__version__)
    try:
        with renderer.output_guard():
            while True:
                try:
                    line = await renderer.get_user_input(shell.context.working_directory, attachment.session_id)
                except KeyboardInterrupt:
                    continue
                except EOFError:
                    break
                if attachment.session_id is not None:
                    await _forward(shell, renderer, attachment, line)
                    continue
                if line.strip() in EXIT_COMMANDS:
                    break
                if not line.strip():
                    continue
                result = await shell.execute(line)
                if result.success and result.output == CLEAR_MARKER:
                    renderer.clear()
                    continue
                renderer.result(result)
                if result.interactive_session_id is not None:
                    attachment.session_id = result.interactive_session_id
                    renderer.info(f"Attached to {result.interactive_session_id}; type {DETACH_SEQUENCE} to detach")
    finally:
        disconnect()
        await shell.aclose()
        renderer.info("Goodbye!")


async def _forward(shell: Shell, renderer: Renderer, attachment: _Attachment, line: str) -> None:
    session_id = attachment.session_id
    if session_id is None:
        return
    if line.strip() == DETACH_SEQUENCE:
        attachment.session_id = None
        renderer.info(f"Detached from {session_id}; use 'kill {session_id}' to end it")
        return
    try:
        await shell.sessions.write_to_session(session_id, line + "\n")
    except ShellError as exc:
        renderer.error(str(exc))
        attachment.session_id = None
