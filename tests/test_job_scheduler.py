import asyncio

import pytest

from protoshell.core.jobs import JobScheduler
from protoshell.core.pipeline import PipelineExecutor
from protoshell.core.registry import CommandRegistry, Invocation
from protoshell.core.types import JobStatus, ShellContext
from protoshell.errors import ConcurrencyLimitExceeded
from protoshell.events import ShellEvents


class _Gate:
    def __init__(self) -> None:
        self.event = asyncio.Event()
        self.calls = 0


def _scheduler(service, gate: _Gate, events: ShellEvents | None = None, **kwargs) -> JobScheduler:
    registry = CommandRegistry()

    @registry.register(name="wait")
    async def wait(inv: Invocation) -> str:
        gate.calls += 1
        await gate.event.wait()
        return "done"

    @registry.register(name="echo")
    def echo(inv: Invocation) -> str:
        return " ".join(inv.args)

    @registry.register(name="boom")
    def boom(inv: Invocation) -> str:
        raise RuntimeError("kaboom")

    @registry.register(name="setvar")
    def setvar(inv: Invocation) -> str:
        inv.context.shell_variables["touched"] = "yes"
        return ""

    pipeline = PipelineExecutor(registry, service, is_system_command=service.knows)
    return JobScheduler(pipeline, events=events, **kwargs)


@pytest.mark.asyncio
async def test_execute_routes_plain_and_pipeline_lines(service) -> None:
    scheduler = _scheduler(service, _Gate())
    context = ShellContext()

    plain = await scheduler.execute("echo hello world", context)
    piped = await scheduler.execute("echo hello | upper", context)
    missing = await scheduler.execute("nosuchcommand", context)
    empty = await scheduler.execute("   ", context)

    assert plain.output == "hello world"
    assert piped.output == "HELLO"
    assert missing.exit_code == 127
    assert not missing.success
    assert empty.success and empty.exit_code == 0


@pytest.mark.asyncio
async def test_background_job_returns_immediately_and_completes(service) -> None:
    gate = _Gate()
    events = ShellEvents()
    ended: list[str] = []
    events.subscribe("job_end", lambda sender, job, result: ended.append(job.id))
    scheduler = _scheduler(service, gate, events=events)

    job_id = scheduler.execute_in_background("wait &", ShellContext())
    job = scheduler.get_job(job_id)

    assert job is not None
    assert job.status is JobStatus.RUNNING
    assert job.command == "wait"
    assert scheduler.background_job(job_id)

    gate.event.set()
    result = await scheduler.foreground_job(job_id)

    assert result.success
    assert result.output == "done"
    assert job.status is JobStatus.COMPLETED
    assert job.exit_code == 0
    assert job.end_time is not None
    assert ended == [job_id]
    assert not scheduler.background_job(job_id)
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_concurrency_ceiling_rejects_without_creating_a_job(service) -> None:
    gate = _Gate()
    scheduler = _scheduler(service, gate, max_concurrent_jobs=2)
    context = ShellContext()

    scheduler.execute_in_background("wait", context)
    scheduler.execute_in_background("wait", context)
    with pytest.raises(ConcurrencyLimitExceeded, match=r"Maximum concurrent jobs \(2\) reached"):
        scheduler.execute_in_background("wait", context)

    assert len(scheduler.jobs()) == 2
    gate.event.set()
    await asyncio.gather(*(job.task for job in scheduler.jobs() if job.task is not None))
    assert len(scheduler.running_jobs()) == 0
    scheduler.execute_in_background("echo again", context)
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_cancel_running_job(service) -> None:
    gate = _Gate()
    scheduler = _scheduler(service, gate)
    job_id = scheduler.execute_in_background("wait", ShellContext())
    await asyncio.sleep(0)

    assert scheduler.cancel_job(job_id) is True
    job = scheduler.get_job(job_id)
    assert job is not None
    assert job.status is JobStatus.CANCELLED
    assert job.exit_code == 130

    stored = job.result
    assert scheduler.cancel_job(job_id) is False
    assert job.result is stored

    result = await scheduler.foreground_job(job_id)
    assert result.exit_code == 130
    assert not result.success
    assert job.task is not None
    await job.task
    assert job.status is JobStatus.CANCELLED
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_cancel_before_start_skips_execution(service) -> None:
    gate = _Gate()
    scheduler = _scheduler(service, gate)
    job_id = scheduler.execute_in_background("wait", ShellContext())

    scheduler.cancel_job(job_id)
    job = scheduler.get_job(job_id)
    assert job is not None and job.task is not None
    await job.task

    assert gate.calls == 0
    assert job.status is JobStatus.CANCELLED
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_unknown_jobs(service) -> None:
    scheduler = _scheduler(service, _Gate())

    result = await scheduler.foreground_job("nope")

    assert not result.success
    assert result.error_message == "Job not found: nope"
    assert scheduler.cancel_job("nope") is False
    assert scheduler.background_job("nope") is False


@pytest.mark.asyncio
async def test_foreground_returns_the_same_stored_result(service) -> None:
    scheduler = _scheduler(service, _Gate())
    job_id = scheduler.execute_in_background("echo once", ShellContext())

    first = await scheduler.foreground_job(job_id)
    second = await scheduler.foreground_job(job_id)

    assert first.output == "once"
    assert first is second
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_failed_job(service) -> None:
    scheduler = _scheduler(service, _Gate())
    job_id = scheduler.execute_in_background("boom", ShellContext())

    result = await scheduler.foreground_job(job_id)
    job = scheduler.get_job(job_id)

    assert job is not None
    assert job.status is JobStatus.FAILED
    assert job.error == "kaboom"
    assert result.exit_code == 1
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_background_job_uses_a_context_snapshot(service) -> None:
    scheduler = _scheduler(service, _Gate())
    context = ShellContext()

    job_id = scheduler.execute_in_background("setvar", context)
    await scheduler.foreground_job(job_id)

    assert "touched" not in context.shell_variables
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_job_history_is_finished_jobs_newest_first(service) -> None:
    gate = _Gate()
    scheduler = _scheduler(service, gate)
    context = ShellContext()
    finished = []
    for word in ("one", "two", "three"):
        job_id = scheduler.execute_in_background(f"echo {word}", context)
        await scheduler.foreground_job(job_id)
        finished.append(job_id)
        await asyncio.sleep(0.01)
    running = scheduler.execute_in_background("wait", context)

    history = scheduler.get_job_history()

    assert [job.id for job in history] == list(reversed(finished))
    assert running not in {job.id for job in history}
    assert [job.id for job in scheduler.get_job_history(limit=1)] == [finished[-1]]
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_finished_jobs_are_evicted_after_retention(service) -> None:
    scheduler = _scheduler(service, _Gate(), retention_seconds=0.05)
    job_id = scheduler.execute_in_background("echo bye", ShellContext())
    await scheduler.foreground_job(job_id)
    assert scheduler.get_job(job_id) is not None

    for _ in range(50):
        if scheduler.get_job(job_id) is None:
            break
        await asyncio.sleep(0.05)

    assert scheduler.get_job(job_id) is None
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_clear_completed_jobs_keeps_running_ones(service) -> None:
    gate = _Gate()
    scheduler = _scheduler(service, gate)
    context = ShellContext()
    done = scheduler.execute_in_background("echo x", context)
    await scheduler.foreground_job(done)
    running = scheduler.execute_in_background("wait", context)

    assert scheduler.clear_completed_jobs() == 1
    assert scheduler.get_job(done) is None
    assert scheduler.get_job(running) is not None
    await scheduler.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_running_jobs(service) -> None:
    scheduler = _scheduler(service, _Gate())
    job_id = scheduler.execute_in_background("wait", ShellContext())
    await asyncio.sleep(0)

    await scheduler.shutdown()

    job = scheduler.get_job(job_id)
    assert job is not None
    assert job.status is JobStatus.CANCELLED


@pytest.mark.asyncio
async def test_execute_passes_timeout_to_external_programs(service) -> None:
    scheduler = _scheduler(service, _Gate())

    await scheduler.execute("upper abc", ShellContext(), timeout=1.5)
    await scheduler.execute("upper abc | lines", ShellContext(), timeout=3)

    assert service.timeouts == [1.5, 3, 3]
