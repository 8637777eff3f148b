"""Host process boundary."""

from protoshell.execution.service import ExecutionService, ProcessHandle, SessionEvent, SubprocessExecutionService

__all__ = ["ExecutionService", "ProcessHandle", "SessionEvent", "SubprocessExecutionService"]
