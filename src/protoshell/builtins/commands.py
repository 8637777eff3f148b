"""Built-in shell commands."""

from __future__ import annotations

import asyncio
import math
import os
import re

from protoshell.config import Settings
from protoshell.core.jobs import JobScheduler
from protoshell.core.registry import CommandRegistry, Invocation
from protoshell.core.types import ExecutionResult
from protoshell.history import HistoryStore
from protoshell.sessions.manager import InteractiveSessionManager

CLEAR_MARKER = "__CLEAR__"
DEFAULT_HISTORY_LIMIT = 20
ALIAS_RE = re.compile(r"^(\w+)=(.+)$")
ASSIGNMENT_RE = re.compile(r"^(\w+)=(.*)$")

HELP_HEADER = "ProtoShell - interactive protocol debugging shell"
HELP_SECTIONS = {"builtin": "Commands", "proto": "Protocol commands"}
HELP_FOOTER = """
Use 'help <command>' for details. Append '&' to run a line in the background."""


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def change_directory(current: str, target: str, home: str) -> str:
    """Compute the new working directory for `cd` without touching the filesystem."""
    if not target or target == "~":
        return os.path.normpath(home)
    if target.startswith("~/"):
        return os.path.normpath(os.path.join(home, target[2:]))
    if os.path.isabs(target):
        return os.path.normpath(target)
    return os.path.normpath(os.path.join(current, target))


def register_builtin_commands(
    registry: CommandRegistry,
    *,
    scheduler: JobScheduler,
    sessions: InteractiveSessionManager,
    history: HistoryStore,
    settings: Settings,
    version: str,
) -> None:
    """Register the core built-ins on `registry`."""

    register = registry.register

    @register(name="help", description="Show available commands", usage="help [command]", examples=["help", "help cd"])
    def show_help(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            sections = []
            for kind in registry.kinds():
                rows = "\n".join(f"  {row}" for row in registry.compact_rows(kind))
                sections.append(f"{HELP_SECTIONS.get(kind, kind.title())}:\n{rows}")
            body = "\n\n".join(sections)
            return ExecutionResult.ok(f"{HELP_HEADER}\n\n{body}\n{HELP_FOOTER}")
        name = " ".join(inv.args)
        if not registry.has(name):
            name = inv.args[0]
        try:
            return ExecutionResult.ok(registry.detail(name))
        except KeyError:
            return ExecutionResult.failure(f"Command not found: {name}")

    @register(name="echo", description="Print arguments to output", usage="echo [args...]", examples=["echo Hello World"])
    def echo(inv: Invocation) -> str:
        return " ".join(inv.args)

    @register(name="clear", description="Clear the console output", usage="clear")
    def clear(inv: Invocation) -> str:
        return CLEAR_MARKER

    @register(name="version", description="Show version information", usage="version")
    def show_version(inv: Invocation) -> str:
        return f"ProtoShell v{version}"

    @register(name="pwd", description="Print working directory", usage="pwd")
    def pwd(inv: Invocation) -> str:
        return inv.context.working_directory or "/"

    @register(name="cd", description="Change directory", usage="cd [directory]", examples=["cd /home", "cd ..", "cd ~"])
    def cd(inv: Invocation) -> str:
        target = inv.args[0] if inv.args else "~"
        context = inv.context
        context.working_directory = change_directory(context.working_directory, target, settings.home_directory)
        return ""

    @register(name="history", description="Show command history", usage="history [n]", examples=["history", "history 10"])
    def show_history(inv: Invocation) -> ExecutionResult:
        limit = DEFAULT_HISTORY_LIMIT
        if inv.args:
            try:
                limit = int(inv.args[0])
            except ValueError:
                return ExecutionResult.failure(f"history: invalid count: {inv.args[0]}")
        entries = list(reversed(history.recent(limit)))
        if not entries:
            return ExecutionResult.ok("No command history")
        lines = [f"{index:4d} {' '.join([entry.command, *entry.args])}" for index, entry in enumerate(entries, 1)]
        return ExecutionResult.ok("\n".join(lines))

    @register(name="jobs", description="List background jobs", usage="jobs")
    def list_jobs(inv: Invocation) -> str:
        jobs = scheduler.jobs()
        if not jobs:
            return "No jobs"
        return "\n".join(
            f"[{job.id[:8]}] {job.status.value.ljust(10)} {' '.join([job.command, *job.args])} "
            f"({round(job.duration_seconds)}s)"
            for job in jobs
        )

    @register(name="fg", description="Bring a job to the foreground", usage="fg <job-id>", examples=["fg 1a2b3c4d"])
    async def foreground(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            return ExecutionResult.failure("Usage: fg <job-id>")
        return await scheduler.foreground_job(inv.args[0])

    @register(name="bg", description="Keep a job running in the background", usage="bg <job-id>")
    def background(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            return ExecutionResult.failure("Usage: bg <job-id>")
        job_id = inv.args[0]
        if scheduler.background_job(job_id):
            return ExecutionResult.ok(f"Job {job_id} moved to background")
        return ExecutionResult.failure(f"Job not found or not running: {job_id}")

    @register(
        name="kill",
        description="Cancel a job or terminate an interactive session",
        usage="kill <job-id|session-id>",
        examples=["kill 1a2b3c4d", "kill session-1a2b3c4d"],
    )
    async def kill(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            return ExecutionResult.failure("Usage: kill <job-id>")
        target = inv.args[0]
        if scheduler.cancel_job(target):
            return ExecutionResult.ok(f"Job {target} killed")
        if await sessions.kill_session(target):
            return ExecutionResult.ok(f"Session {target} killed")
        return ExecutionResult.failure(f"Job not found or already completed: {target}")

    @register(name="sessions", description="List interactive sessions", usage="sessions")
    def list_sessions(inv: Invocation) -> str:
        items = sessions.sessions()
        if not items:
            return "No interactive sessions"
        return "\n".join(
            f"{session.id}  {session.state.value.ljust(8)} {' '.join([session.command, *session.args])}"
            for session in items
        )

    @register(
        name="alias",
        description="Create or list command aliases",
        usage="alias [name=value]",
        examples=["alias", 'alias ll="ls -la"'],
    )
    def alias(inv: Invocation) -> ExecutionResult:
        aliases = inv.context.aliases
        if not inv.args:
            if not aliases:
                return ExecutionResult.ok("No aliases defined")
            return ExecutionResult.ok("\n".join(f"{name}='{value}'" for name, value in sorted(aliases.items())))
        match = ALIAS_RE.match(" ".join(inv.args))
        if match is None:
            return ExecutionResult.failure("Invalid alias syntax. Use: alias name=value")
        aliases[match.group(1)] = _strip_quotes(match.group(2))
        return ExecutionResult.ok()

    @register(name="unalias", description="Remove an alias", usage="unalias NAME", examples=["unalias ll"])
    def unalias(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            return ExecutionResult.failure("Usage: unalias NAME")
        missing = [name for name in inv.args if inv.context.aliases.pop(name, None) is None]
        if missing:
            return ExecutionResult.failure(f"unalias: not found: {', '.join(missing)}")
        return ExecutionResult.ok()

    @register(
        name="export",
        description="Set an environment variable",
        usage="export NAME=value",
        examples=["export PATH=/usr/bin", "export DEBUG=true"],
    )
    def export(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            return ExecutionResult.failure("Usage: export NAME=value")
        match = ASSIGNMENT_RE.match(" ".join(inv.args))
        if match is None:
            return ExecutionResult.failure("Invalid export syntax. Use: export NAME=value")
        inv.context.environment_variables[match.group(1)] = _strip_quotes(match.group(2))
        return ExecutionResult.ok()

    @register(name="set", description="Set or list shell variables", usage="set [NAME=value]", examples=["set DEBUG=1"])
    def set_variable(inv: Invocation) -> ExecutionResult:
        variables = inv.context.shell_variables
        if not inv.args:
            if not variables:
                return ExecutionResult.ok("No variables set")
            return ExecutionResult.ok("\n".join(f"{name}={value}" for name, value in sorted(variables.items())))
        match = ASSIGNMENT_RE.match(" ".join(inv.args))
        if match is None:
            return ExecutionResult.failure("Invalid set syntax. Use: set NAME=value")
        variables[match.group(1)] = _strip_quotes(match.group(2))
        return ExecutionResult.ok()

    @register(name="unset", description="Remove a shell or environment variable", usage="unset NAME")
    def unset(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            return ExecutionResult.failure("Usage: unset NAME")
        for name in inv.args:
            inv.context.shell_variables.pop(name, None)
            inv.context.environment_variables.pop(name, None)
        return ExecutionResult.ok()

    @register(name="sleep", description="Wait for a number of seconds", usage="sleep <seconds>", examples=["sleep 10 &"])
    async def sleep(inv: Invocation) -> ExecutionResult:
        if not inv.args:
            return ExecutionResult.failure("Usage: sleep <seconds>")
        try:
            seconds = float(inv.args[0])
        except ValueError:
            return ExecutionResult.failure("Invalid number of seconds")
        if seconds < 0 or not math.isfinite(seconds):
            return ExecutionResult.failure("Invalid number of seconds")
        await asyncio.sleep(seconds)
        return ExecutionResult.ok(f"Slept for {inv.args[0]} seconds")
