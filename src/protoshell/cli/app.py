"""ProtoShell command line entry point."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from protoshell.config import Settings, get_settings
from protoshell.core.types import ExecutionResult
from protoshell.errors import ConfigurationError
from protoshell.logging_utils import configure_logging
from protoshell.shell import Shell

from .render import Renderer
from .repl import run_repl

app = typer.Typer(
    name="protoshell",
    help="Interactive shell for protocol debugging.",
    add_completion=False,
    rich_markup_mode="rich",
)

WorkdirOption = Annotated[Path | None, typer.Option("--workdir", "-C", help="Initial working directory")]
HistoryOption = Annotated[Path | None, typer.Option("--history", help="Persist history to this JSON file")]
LogLevelOption = Annotated[str | None, typer.Option("--log-level", help="Log level")]


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context) -> None:
    if ctx.invoked_subcommand is None:
        repl()


def _load_settings(workdir: Path | None, history: Path | None, log_level: str | None) -> Settings:
    overrides: dict[str, object] = {}
    if workdir is not None:
        overrides["working_directory"] = str(workdir.expanduser().resolve())
    if history is not None:
        overrides["history_path"] = history.expanduser()
    if log_level is not None:
        overrides["log_level"] = log_level
    try:
        return get_settings(**overrides)
    except ConfigurationError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(2) from exc


@app.command()
def repl(workdir: WorkdirOption = None, history: HistoryOption = None, log_level: LogLevelOption = None) -> None:
    """Start the interactive shell."""
    settings = _load_settings(workdir, history, log_level)
    configure_logging(profile="repl", level=log_level or "WARNING")
    shell = Shell(settings)
    renderer = Renderer(complete=shell.complete, home=settings.home_directory)
    asyncio.run(run_repl(shell, renderer))


async def _run_once(settings: Settings, line: str) -> ExecutionResult:
    async with Shell(settings) as shell:
        result = await shell.execute(line)
        if result.background_job_id is not None:
            result = await shell.scheduler.foreground_job(result.background_job_id)
        return result


@app.command()
def run(
    line: Annotated[str, typer.Argument(help="Command line to execute")],
    workdir: WorkdirOption = None,
    history: HistoryOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Execute one command line and exit with its exit code."""
    settings = _load_settings(workdir, history, log_level)
    configure_logging(profile="default", level=settings.log_level)
    result = asyncio.run(_run_once(settings, line))
    if result.output:
        typer.echo(result.output.rstrip("\n"))
    if not result.success and result.error_message:
        typer.echo(result.error_message, err=True)
    raise typer.Exit(result.exit_code)
