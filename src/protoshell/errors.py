"""Application-level exception types for ProtoShell."""

from __future__ import annotations


class ShellError(Exception):
    """Base exception for ProtoShell."""


class ConfigurationError(ShellError):
    """Raised when settings are inconsistent."""


class ParseError(ShellError):
    """Raised when a command line cannot be interpreted."""


class CommandNotFoundError(ShellError):
    """Raised when a name resolves to neither a built-in nor a system command."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Command not found: {name}")
        self.name = name


class ExecutionFailure(ShellError):
    """Raised when an external program could not be run."""


class ConcurrencyLimitExceeded(ShellError):
    """Raised when a background job would exceed the running-job ceiling."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Maximum concurrent jobs ({limit}) reached")
        self.limit = limit


class JobNotFoundError(ShellError):
    """Raised when a job id is unknown."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class SessionNotFoundError(ShellError):
    """Raised when an interactive session id is unknown."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionNotRunningError(ShellError):
    """Raised when writing to a session that is not running."""

    def __init__(self, session_id: str, state: str) -> None:
        super().__init__(f"Session {session_id} is not running (state: {state})")
        self.session_id = session_id
        self.state = state
