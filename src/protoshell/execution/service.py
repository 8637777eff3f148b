"""Boundary to the host's process and file primitives."""

from __future__ import annotations

import asyncio
import codecs
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

from loguru import logger

from protoshell.core.cancellation import CancellationToken
from protoshell.core.types import EXIT_FAILURE, EXIT_NOT_FOUND, EXIT_TIMEOUT, ExecutionResult, ShellContext
from protoshell.errors import ExecutionFailure

SessionEventKind = Literal["stdout", "stderr", "close"]
READ_CHUNK_SIZE = 65536


@dataclass(frozen=True)
class SessionEvent:
    """One event emitted by a long-lived process."""

    kind: SessionEventKind
    payload: str | int


@dataclass(frozen=True)
class ProcessHandle:
    """Opaque reference to an interactive process."""

    id: str
    pid: int | None = None


class ExecutionService(Protocol):
    """Everything the shell needs from the host runtime."""

    async def run(
        self,
        command: str,
        args: list[str],
        context: ShellContext,
        *,
        stdin: str | None = None,
        token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult: ...

    async def start_interactive(
        self,
        command: str,
        args: list[str],
        context: ShellContext,
        sink: asyncio.Queue[SessionEvent],
    ) -> ProcessHandle: ...

    async def write(self, handle: ProcessHandle, data: str) -> None: ...

    async def kill(self, handle: ProcessHandle) -> None: ...

    async def read_file(self, path: str) -> str: ...

    async def write_file(self, path: str, content: str, *, append: bool = False) -> None: ...


@dataclass
class _InteractiveProcess:
    process: asyncio.subprocess.Process
    pump: asyncio.Task[None]


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


class SubprocessExecutionService:
    """Execution service backed by asyncio subprocesses on the local host."""

    def __init__(self, *, encoding: str = "utf-8") -> None:
        self._encoding = encoding
        self._interactive: dict[str, _InteractiveProcess] = {}

    def _decode(self, data: bytes | None) -> str:
        return (data or b"").decode(self._encoding, errors="replace")

    @staticmethod
    def _environment(context: ShellContext) -> dict[str, str]:
        return {**os.environ, **context.environment_variables}

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
        start = time.monotonic()
        cwd = context.working_directory
        if not Path(cwd).is_dir():
            return ExecutionResult.failure(f"working directory does not exist: {cwd}", execution_time_ms=_elapsed_ms(start))

        logger.info("exec.run command={} args={} cwd={}", command, args, cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=cwd,
                env=self._environment(context),
                stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return ExecutionResult.failure(
                f"{command}: command not found", EXIT_NOT_FOUND, execution_time_ms=_elapsed_ms(start)
            )
        except OSError as exc:
            return ExecutionResult.failure(f"{command}: {exc.strerror or exc}", execution_time_ms=_elapsed_ms(start))

        unregister = token.on_cancel(lambda: _terminate(process)) if token is not None else None
        payload = stdin.encode(self._encoding) if stdin is not None else None
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(payload), timeout=timeout)
        except TimeoutError:
            _terminate(process)
            await process.wait()
            logger.warning("exec.timeout command={} timeout={}", command, timeout)
            return ExecutionResult.failure(
                f"{command}: timed out after {timeout}s", EXIT_TIMEOUT, execution_time_ms=_elapsed_ms(start)
            )
        except asyncio.CancelledError:
            _terminate(process)
            raise
        finally:
            if unregister is not None:
                unregister()

        code = process.returncode if process.returncode is not None else EXIT_FAILURE
        output = self._decode(stdout)
        error = self._decode(stderr).strip()
        logger.info("exec.done command={} exit_code={}", command, code)
        if code == 0:
            return ExecutionResult.ok(output, execution_time_ms=_elapsed_ms(start))
        return ExecutionResult.failure(
            error or f"{command}: exit code {code}", code, output=output, execution_time_ms=_elapsed_ms(start)
        )

    async def start_interactive(
        self,
        command: str,
        args: list[str],
        context: ShellContext,
        sink: asyncio.Queue[SessionEvent],
    ) -> ProcessHandle:
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                cwd=context.working_directory,
                env=self._environment(context),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ExecutionFailure(f"{command}: command not found") from exc
        except OSError as exc:
            raise ExecutionFailure(f"{command}: {exc.strerror or exc}") from exc

        handle = ProcessHandle(id=uuid.uuid4().hex, pid=process.pid)
        pump = asyncio.create_task(self._pump(handle, process, sink))
        self._interactive[handle.id] = _InteractiveProcess(process=process, pump=pump)
        logger.info("exec.interactive.start command={} pid={}", command, process.pid)
        return handle

    async def _pump(
        self,
        handle: ProcessHandle,
        process: asyncio.subprocess.Process,
        sink: asyncio.Queue[SessionEvent],
    ) -> None:
        try:
            try:
                await asyncio.gather(
                    self._forward(process.stdout, "stdout", sink),
                    self._forward(process.stderr, "stderr", sink),
                )
            except Exception:
                logger.exception("exec.interactive.pump.error pid={}", process.pid)
                _terminate(process)
            code = await process.wait()
            logger.info("exec.interactive.end pid={} exit_code={}", process.pid, code)
            await sink.put(SessionEvent("close", code))
        finally:
            self._interactive.pop(handle.id, None)

    async def _forward(
        self,
        stream: asyncio.StreamReader | None,
        kind: SessionEventKind,
        sink: asyncio.Queue[SessionEvent],
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder(self._encoding)(errors="replace")
        pending = ""
        while chunk := await stream.read(READ_CHUNK_SIZE):
            pending += decoder.decode(chunk)
            *lines, pending = pending.split("\n")
            for line in lines:
                await sink.put(SessionEvent(kind, line + "\n"))
            # Lines without a newline are flushed once they reach the chunk size.
            if len(pending) >= READ_CHUNK_SIZE:
                await sink.put(SessionEvent(kind, pending))
                pending = ""
        pending += decoder.decode(b"", final=True)
        if pending:
            await sink.put(SessionEvent(kind, pending))

    async def write(self, handle: ProcessHandle, data: str) -> None:
        entry = self._interactive.get(handle.id)
        if entry is None or entry.process.stdin is None:
            raise ExecutionFailure("session stdin not available")
        try:
            entry.process.stdin.write(data.encode(self._encoding))
            await entry.process.stdin.drain()
        except OSError as exc:
            raise ExecutionFailure(f"session write failed: {exc}") from exc

    async def kill(self, handle: ProcessHandle) -> None:
        entry = self._interactive.get(handle.id)
        if entry is None:
            return
        _terminate(entry.process)

    async def read_file(self, path: str) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding=self._encoding)

    async def write_file(self, path: str, content: str, *, append: bool = False) -> None:
        def _write() -> None:
            with open(path, "a" if append else "w", encoding=self._encoding) as handle:
                handle.write(content)

        await asyncio.to_thread(_write)
