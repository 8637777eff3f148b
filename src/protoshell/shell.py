"""Shell orchestration: alias expansion, routing and history."""

from __future__ import annotations

import re
import time
import uuid
from datetime import UTC, datetime

from loguru import logger

from protoshell import __version__
from protoshell.builtins.commands import register_builtin_commands
from protoshell.builtins.proto import InMemoryProtocolSessionStore, ProtocolSessionStore, register_proto_commands
from protoshell.config import Settings, get_settings
from protoshell.core.jobs import JobScheduler
from protoshell.core.parser import has_pipeline_features, parse_line, strip_background, tokenize
from protoshell.core.pipeline import PipelineExecutor
from protoshell.core.registry import CommandRegistry
from protoshell.core.types import ExecutionResult, HistoryEntry, ParsedLine, ShellContext
from protoshell.errors import ConcurrencyLimitExceeded
from protoshell.events import ShellEvents
from protoshell.execution.detect import (
    AllowListPredicate,
    CommandPredicate,
    InteractivePredicate,
    requires_interactive_mode,
)
from protoshell.execution.service import ExecutionService, SubprocessExecutionService
from protoshell.history import HistoryStore, InMemoryHistory, JSONHistoryStore
from protoshell.sessions.manager import InteractiveSessionManager, SessionHandlers

HISTORY_OUTPUT_LIMIT = 4096
_HEAD_RE = re.compile(r"(\S+)(.*)", re.DOTALL)


def _default_history(settings: Settings) -> HistoryStore:
    if settings.history_path is not None:
        return JSONHistoryStore(settings.history_path, max_size=settings.history_size)
    return InMemoryHistory(max_size=settings.history_size)


class Shell:
    """A single shell instance.

    Owns its context, command registry, job scheduler and session manager.
    Nothing is shared between two `Shell` objects unless passed in.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        service: ExecutionService | None = None,
        history: HistoryStore | None = None,
        protocol_store: ProtocolSessionStore | None = None,
        events: ShellEvents | None = None,
        is_system_command: CommandPredicate | None = None,
        is_interactive: InteractivePredicate | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.events = events or ShellEvents()
        self.context = ShellContext(working_directory=self.settings.working_directory)
        self.service = service or SubprocessExecutionService()
        self.history_store = history if history is not None else _default_history(self.settings)
        self.protocol_store = protocol_store or InMemoryProtocolSessionStore()
        self.is_system_command = is_system_command or AllowListPredicate(
            self.settings.extra_system_commands, search_path=self.settings.resolve_from_path
        )
        self.is_interactive = is_interactive or requires_interactive_mode
        # Callbacks given to interactive sessions started from `execute`.
        self.session_handlers: SessionHandlers | None = None

        self.registry = CommandRegistry()
        self.pipeline = PipelineExecutor(
            self.registry,
            self.service,
            is_system_command=self.is_system_command,
            timeout=self.settings.command_timeout_seconds,
        )
        self.scheduler = JobScheduler(
            self.pipeline,
            max_concurrent_jobs=self.settings.max_concurrent_jobs,
            retention_seconds=self.settings.job_retention_seconds,
            events=self.events,
        )
        self.sessions = InteractiveSessionManager(
            self.service, queue_size=self.settings.session_queue_size, events=self.events
        )
        register_builtin_commands(
            self.registry,
            scheduler=self.scheduler,
            sessions=self.sessions,
            history=self.history_store,
            settings=self.settings,
            version=__version__,
        )
        register_proto_commands(self.registry, store=self.protocol_store)

    async def __aenter__(self) -> Shell:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def expand_alias(self, raw: str) -> str:
        """Replace a leading alias once. Aliases of aliases are not followed."""
        match = _HEAD_RE.match(raw.lstrip())
        if match is None:
            return raw
        head, rest = match.groups()
        expansion = self.context.aliases.get(head)
        if expansion is None:
            return raw
        return expansion + rest

    async def execute(self, raw: str) -> ExecutionResult:
        """Run one input line. Never raises; failures come back as results."""
        start = time.monotonic()
        line = self.expand_alias(raw)
        parsed = parse_line(line)
        if parsed.is_empty:
            return ExecutionResult.ok()

        words = tokenize(strip_background(line)[0])
        command, args = self.registry.resolve_name(words)
        cwd = self.context.working_directory
        self.events.emit("command_start", self, line=line, command=command)
        logger.info("shell.execute line={}", line)
        try:
            result = await self._route(line, parsed)
        except Exception as exc:
            logger.exception("shell.execute.error line={}", line)
            result = ExecutionResult.failure(str(exc) or exc.__class__.__name__)
        result = result.timed(int((time.monotonic() - start) * 1000))

        self._record(command, args, cwd, result)
        self.events.emit("command_end", self, line=line, command=command, result=result)
        if self.context.working_directory != cwd:
            self.events.emit("cwd_change", self, previous=cwd, current=self.context.working_directory)
        return result

    async def _route(self, line: str, parsed: ParsedLine) -> ExecutionResult:
        if parsed.background:
            try:
                job_id = self.scheduler.execute_in_background(line, self.context)
            except ConcurrencyLimitExceeded as exc:
                return ExecutionResult.failure(str(exc))
            return ExecutionResult.ok(f"[{job_id}] Job started in background", background_job_id=job_id)

        if self._needs_session(line, parsed):
            stage = parsed.commands[0]
            session_id = await self.sessions.start_session(
                stage.command, stage.args, self.context, self.session_handlers
            )
            return ExecutionResult.ok(
                f"Interactive session {session_id} started: {stage.command}",
                interactive_session_id=session_id,
            )

        return await self.scheduler.execute(line, self.context)

    def _needs_session(self, line: str, parsed: ParsedLine) -> bool:
        if len(parsed.commands) != 1 or has_pipeline_features(line):
            return False
        stage = parsed.commands[0]
        builtin, _ = self.registry.resolve([stage.command, *stage.args])
        if builtin is not None:
            return False
        return self.is_system_command(stage.command) and self.is_interactive(stage.command, stage.args)

    def _record(self, command: str, args: list[str], cwd: str, result: ExecutionResult) -> None:
        entry = HistoryEntry(
            id=uuid.uuid4().hex,
            command=command,
            args=args,
            timestamp=datetime.now(UTC),
            cwd=cwd,
            exit_code=result.exit_code,
            execution_time_ms=result.execution_time_ms,
            output=result.output[:HISTORY_OUTPUT_LIMIT],
            error=result.error_message,
        )
        try:
            self.history_store.append(entry)
        except Exception:
            logger.exception("history.append.error command={}", command)

    def complete(self, prefix: str) -> list[str]:
        """Command names and aliases starting with `prefix`."""
        names = set(self.registry.names()) | set(self.context.aliases)
        return sorted(name for name in names if name.startswith(prefix))

    def history(self, limit: int = 20) -> list[HistoryEntry]:
        return self.history_store.recent(limit)

    def search_history(self, query: str) -> list[HistoryEntry]:
        return self.history_store.search(query)

    def clear_history(self) -> None:
        self.history_store.clear()

    async def aclose(self) -> None:
        await self.scheduler.shutdown()
        await self.sessions.shutdown()
