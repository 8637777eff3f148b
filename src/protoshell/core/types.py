"""Shared core dataclasses."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127
EXIT_CANCELLED = 130


class RedirectKind(StrEnum):
    STDOUT_TRUNCATE = "stdout"
    STDOUT_APPEND = "stdout-append"
    STDERR_TRUNCATE = "stderr"
    STDERR_APPEND = "stderr-append"
    STDIN = "stdin"

    @property
    def appends(self) -> bool:
        return self in (RedirectKind.STDOUT_APPEND, RedirectKind.STDERR_APPEND)

    @property
    def is_stdout(self) -> bool:
        return self in (RedirectKind.STDOUT_TRUNCATE, RedirectKind.STDOUT_APPEND)

    @property
    def is_stderr(self) -> bool:
        return self in (RedirectKind.STDERR_TRUNCATE, RedirectKind.STDERR_APPEND)


@dataclass(frozen=True)
class Redirect:
    """One redirect directive of a pipeline stage."""

    kind: RedirectKind
    target: str


@dataclass(frozen=True)
class ParsedCommand:
    """One pipeline stage."""

    command: str
    args: list[str] = field(default_factory=list)
    redirects: list[Redirect] = field(default_factory=list)


@dataclass(frozen=True)
class ParsedLine:
    """A full input line: the pipeline stages plus the background marker."""

    commands: list[ParsedCommand] = field(default_factory=list)
    background: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.commands


@dataclass
class ShellContext:
    """Mutable execution environment owned by one shell."""

    working_directory: str = "/"
    environment_variables: dict[str, str] = field(default_factory=dict)
    aliases: dict[str, str] = field(default_factory=dict)
    shell_variables: dict[str, str] = field(default_factory=dict)

    def snapshot(self) -> ShellContext:
        """Independent copy used by background jobs."""
        return copy.deepcopy(self)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of executing one line, stage or command."""

    success: bool
    output: str = ""
    error_message: str | None = None
    exit_code: int = EXIT_SUCCESS
    execution_time_ms: int = 0
    background_job_id: str | None = None
    interactive_session_id: str | None = None
    failed_stage: int | None = None

    @classmethod
    def ok(cls, output: str = "", **kwargs: object) -> ExecutionResult:
        return cls(success=True, output=output, **kwargs)  # type: ignore[arg-type]

    @classmethod
    def failure(cls, error: str, exit_code: int = EXIT_FAILURE, *, output: str = "", **kwargs: object) -> ExecutionResult:
        return cls(success=False, output=output, error_message=error, exit_code=exit_code, **kwargs)  # type: ignore[arg-type]

    def timed(self, elapsed_ms: int) -> ExecutionResult:
        return replace(self, execution_time_ms=elapsed_ms)


class JobStatus(StrEnum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


class SessionState(StrEnum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass(frozen=True)
class HistoryEntry:
    """One recorded command execution."""

    id: str
    command: str
    args: list[str]
    timestamp: datetime
    cwd: str
    exit_code: int
    execution_time_ms: int
    output: str = ""
    error: str | None = None
