"""Signal-based shell events."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from blinker import Signal

EVENT_NAMES = (
    "command_start",
    "command_end",
    "job_start",
    "job_end",
    "job_status_change",
    "output",
    "error",
    "cwd_change",
)


class ShellEvents:
    """In-process event hub backed by blinker signals.

    Receivers are called synchronously with keyword payloads. A failing
    receiver is not isolated from the emitter, so keep them small.
    """

    def __init__(self) -> None:
        self.command_start = Signal("protoshell.command_start")
        self.command_end = Signal("protoshell.command_end")
        self.job_start = Signal("protoshell.job_start")
        self.job_end = Signal("protoshell.job_end")
        self.job_status_change = Signal("protoshell.job_status_change")
        self.output = Signal("protoshell.output")
        self.error = Signal("protoshell.error")
        self.cwd_change = Signal("protoshell.cwd_change")

    def signal(self, name: str) -> Signal:
        if name not in EVENT_NAMES:
            raise KeyError(name)
        return getattr(self, name)

    def emit(self, name: str, sender: Any = None, **payload: Any) -> None:
        self.signal(name).send(sender, **payload)

    def subscribe(self, name: str, handler: Callable[..., Any]) -> Callable[[], None]:
        """Connect `handler(sender, **payload)`; returns the disconnect function."""
        signal = self.signal(name)
        signal.connect(handler, weak=False)
        return lambda: signal.disconnect(handler)
