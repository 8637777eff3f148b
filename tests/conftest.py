from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from protoshell.builtins.proto import InMemoryProtocolSessionStore, ProtocolSession
from protoshell.config import Settings
from protoshell.core.cancellation import CancellationToken
from protoshell.core.types import ExecutionResult, ShellContext
from protoshell.errors import ExecutionFailure
from protoshell.execution.service import ProcessHandle, SessionEvent
from protoshell.history import InMemoryHistory
from protoshell.shell import Shell

Program = Callable[[list[str], str | None], ExecutionResult]


def _cat(args: list[str], stdin: str | None) -> ExecutionResult:
    return ExecutionResult.ok(stdin or "")


def _upper(args: list[str], stdin: str | None) -> ExecutionResult:
    return ExecutionResult.ok((stdin or " ".join(args)).upper())


def _false(args: list[str], stdin: str | None) -> ExecutionResult:
    return ExecutionResult.failure("boom", 2)


def _lines(args: list[str], stdin: str | None) -> ExecutionResult:
    return ExecutionResult.ok(f"{len((stdin or '').splitlines())}\n")


@dataclass
class FakeExecutionService:
    """In-process stand-in for the host: named programs plus scripted sessions."""

    programs: dict[str, Program] = field(
        default_factory=lambda: {"cat": _cat, "upper": _upper, "false": _false, "lines": _lines}
    )
    calls: list[tuple[str, list[str], str | None]] = field(default_factory=list)
    timeouts: list[float | None] = field(default_factory=list)
    written: dict[str, list[str]] = field(default_factory=dict)
    sinks: dict[str, asyncio.Queue[SessionEvent]] = field(default_factory=dict)
    killed: list[str] = field(default_factory=list)
    fail_interactive: bool = False
    delay: float = 0.0
    _counter: int = 0

    def knows(self, name: str) -> bool:
        return name in self.programs or name in ("ssh", "python")

    async def run(
        self,
        command: str,
        args: list[str],
        context: ShellContext,
        *,
        stdin: str | None = None,
        token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        self.calls.append((command, list(args), stdin))
        self.timeouts.append(timeout)
        if self.delay:
            await asyncio.sleep(self.delay)
        program = self.programs.get(command)
        if program is None:
            return ExecutionResult.failure(f"{command}: command not found", 127)
        return program(list(args), stdin)

    async def start_interactive(
        self,
        command: str,
        args: list[str],
        context: ShellContext,
        sink: asyncio.Queue[SessionEvent],
    ) -> ProcessHandle:
        if self.fail_interactive:
            raise ExecutionFailure(f"{command}: command not found")
        self._counter += 1
        handle = ProcessHandle(id=f"proc-{self._counter}", pid=1000 + self._counter)
        self.sinks[handle.id] = sink
        return handle

    async def write(self, handle: ProcessHandle, data: str) -> None:
        self.written.setdefault(handle.id, []).append(data)
        await self.sinks[handle.id].put(SessionEvent("stdout", f"echo: {data}"))

    async def kill(self, handle: ProcessHandle) -> None:
        self.killed.append(handle.id)
        await self.sinks[handle.id].put(SessionEvent("close", -9))

    async def emit(self, handle_id: str, kind: str, payload: str | int) -> None:
        await self.sinks[handle_id].put(SessionEvent(kind, payload))  # type: ignore[arg-type]

    async def read_file(self, path: str) -> str:
        return Path(path).read_text(encoding="utf-8")

    async def write_file(self, path: str, content: str, *, append: bool = False) -> None:
        with open(path, "a" if append else "w", encoding="utf-8") as handle:
            handle.write(content)


@pytest.fixture
def service() -> FakeExecutionService:
    return FakeExecutionService()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        working_directory=str(tmp_path),
        home_directory="/home/tester",
        max_concurrent_jobs=10,
        job_retention_seconds=300,
        history_path=None,
    )


@pytest.fixture
def protocol_store() -> InMemoryProtocolSessionStore:
    return InMemoryProtocolSessionStore(
        [
            ProtocolSession(id="tcp-client-1", name="Local TCP", protocol="TCP", host="127.0.0.1", port=9000),
            ProtocolSession(id="ws-server-1", name="WS Server", protocol="WebSocket", connection_type="server"),
        ]
    )


@pytest.fixture
def shell(
    settings: Settings, service: FakeExecutionService, protocol_store: InMemoryProtocolSessionStore
) -> Shell:
    return Shell(
        settings,
        service=service,
        history=InMemoryHistory(),
        protocol_store=protocol_store,
        is_system_command=service.knows,
        is_interactive=lambda name, args: name in ("ssh", "python") and (name == "ssh" or not args),
    )
