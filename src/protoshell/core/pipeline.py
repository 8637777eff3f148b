"""Sequential pipeline execution with output threading and file redirects."""

from __future__ import annotations

import os
import time
from collections.abc import Sequence
from dataclasses import replace

from loguru import logger

from protoshell.core.cancellation import CancellationToken
from protoshell.core.registry import CommandRegistry, Invocation
from protoshell.core.types import (
    EXIT_CANCELLED,
    EXIT_NOT_FOUND,
    ExecutionResult,
    ParsedCommand,
    RedirectKind,
    ShellContext,
)
from protoshell.errors import CommandNotFoundError
from protoshell.execution.detect import CommandPredicate
from protoshell.execution.service import ExecutionService


def resolve_path(context: ShellContext, target: str) -> str:
    """Resolve a redirect target against the shell's working directory."""
    path = os.path.expanduser(target)
    if os.path.isabs(path):
        return os.path.normpath(path)
    return os.path.normpath(os.path.join(context.working_directory, path))


def not_found(command: str) -> ExecutionResult:
    return ExecutionResult.failure(
        f"{CommandNotFoundError(command)}. Type 'help' for available commands.", EXIT_NOT_FOUND
    )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class PipelineExecutor:
    """Runs parsed stages in order, feeding each stage's output to the next.

    Stages are executed one after another and the captured text of stage i
    becomes the stdin of stage i+1. There is no OS-level pipe between
    external programs.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        service: ExecutionService,
        *,
        is_system_command: CommandPredicate,
        timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._service = service
        self._is_system_command = is_system_command
        self._timeout = timeout

    async def run(
        self,
        stages: Sequence[ParsedCommand],
        context: ShellContext,
        *,
        token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        start = time.monotonic()
        if not stages:
            return ExecutionResult.ok()

        piped: str | None = None
        result = ExecutionResult.ok()
        for index, stage in enumerate(stages):
            if token is not None and token.cancelled:
                return ExecutionResult.failure(
                    "Job cancelled", EXIT_CANCELLED, failed_stage=index, execution_time_ms=_elapsed_ms(start)
                )
            logger.debug("pipeline.stage index={} total={} command={}", index + 1, len(stages), stage.command)
            result = await self.run_stage(stage, context, stdin=piped, token=token, timeout=timeout)
            if not result.success:
                if len(stages) == 1:
                    return result.timed(_elapsed_ms(start))
                return replace(
                    result,
                    output=piped or "",
                    error_message=f"Pipeline failed at command {index + 1}: {result.error_message}",
                    failed_stage=index,
                    execution_time_ms=_elapsed_ms(start),
                )
            piped = result.output
        return result.timed(_elapsed_ms(start))

    async def run_stage(
        self,
        stage: ParsedCommand,
        context: ShellContext,
        *,
        stdin: str | None = None,
        token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Run one stage, honoring its own redirects."""
        start = time.monotonic()
        for redirect in stage.redirects:
            if redirect.kind is not RedirectKind.STDIN:
                continue
            path = resolve_path(context, redirect.target)
            try:
                stdin = await self._service.read_file(path)
            except OSError as exc:
                logger.warning("redirect.read.error path={} error={}", path, exc)
                return ExecutionResult.failure(
                    f"Failed to read input file {redirect.target}: {exc.strerror or exc}",
                    execution_time_ms=_elapsed_ms(start),
                )

        result = await self.run_command(
            stage.command, stage.args, context, stdin=stdin, token=token, timeout=timeout
        )
        await self._write_redirects(stage, result, context)
        return result.timed(_elapsed_ms(start))

    async def run_command(
        self,
        command: str,
        args: Sequence[str],
        context: ShellContext,
        *,
        stdin: str | None = None,
        token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Resolve a name to a built-in, then a system program, else report not found.

        `timeout` overrides the executor's default for this external invocation.
        """
        builtin, rest = self._registry.resolve([command, *args])
        if builtin is not None:
            try:
                return await builtin.run(Invocation(args=rest, context=context, stdin=stdin, token=token))
            except Exception as exc:
                return ExecutionResult.failure(str(exc) or exc.__class__.__name__)
        if self._is_system_command(command):
            if timeout is None:
                timeout = self._timeout
            return await self._service.run(command, list(args), context, stdin=stdin, token=token, timeout=timeout)
        return not_found(command)

    async def _write_redirects(self, stage: ParsedCommand, result: ExecutionResult, context: ShellContext) -> None:
        for redirect in stage.redirects:
            if redirect.kind.is_stdout:
                content = result.output
            elif redirect.kind.is_stderr:
                content = result.error_message or ""
            else:
                continue
            path = resolve_path(context, redirect.target)
            try:
                await self._service.write_file(path, content, append=redirect.kind.appends)
            except OSError as exc:
                logger.warning("redirect.write.error path={} error={}", path, exc)
            else:
                logger.debug("redirect.write path={} bytes={} append={}", path, len(content), redirect.kind.appends)
