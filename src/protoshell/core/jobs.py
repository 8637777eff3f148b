"""Foreground execution and background job tracking."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from loguru import logger

from protoshell.core.cancellation import CancellationToken
from protoshell.core.parser import has_pipeline_features, parse_line, strip_background, tokenize
from protoshell.core.pipeline import PipelineExecutor
from protoshell.core.types import EXIT_CANCELLED, ExecutionResult, JobStatus, ShellContext
from protoshell.errors import ConcurrencyLimitExceeded, JobNotFoundError
from protoshell.events import ShellEvents

DEFAULT_MAX_CONCURRENT_JOBS = 10
DEFAULT_RETENTION_SECONDS = 300.0


@dataclass
class Job:
    """A tracked background execution of one command line."""

    id: str
    line: str
    command: str
    args: list[str]
    status: JobStatus = JobStatus.RUNNING
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    exit_code: int | None = None
    output: str = ""
    error: str | None = None
    result: ExecutionResult | None = field(default=None, repr=False)
    token: CancellationToken = field(default_factory=CancellationToken, repr=False)
    task: asyncio.Task[ExecutionResult] | None = field(default=None, repr=False)

    def cancel(self) -> bool:
        return self.token.cancel()

    @property
    def duration_seconds(self) -> float:
        end = self.end_time or datetime.now(UTC)
        return (end - self.start_time).total_seconds()


def _cancelled_result(job: Job) -> ExecutionResult:
    return ExecutionResult.failure(
        "Job cancelled",
        EXIT_CANCELLED,
        output=job.output,
        execution_time_ms=int(job.duration_seconds * 1000),
    )


class JobScheduler:
    """Runs lines in the foreground or as capacity-limited background jobs."""

    def __init__(
        self,
        pipeline: PipelineExecutor,
        *,
        max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        events: ShellEvents | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._max_concurrent_jobs = max_concurrent_jobs
        self._retention_seconds = retention_seconds
        self._events = events or ShellEvents()
        self._jobs: dict[str, Job] = {}
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def max_concurrent_jobs(self) -> int:
        return self._max_concurrent_jobs

    async def execute(
        self,
        line: str,
        context: ShellContext,
        *,
        token: CancellationToken | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Run one line to completion and return its result."""
        try:
            parsed = parse_line(line)
            if parsed.is_empty:
                return ExecutionResult.ok()
            if has_pipeline_features(line):
                return await self._pipeline.run(parsed.commands, context, token=token, timeout=timeout)
            stage = parsed.commands[0]
            return await self._pipeline.run_command(stage.command, stage.args, context, token=token, timeout=timeout)
        except Exception as exc:
            logger.exception("scheduler.execute.error line={}", line)
            return ExecutionResult.failure(str(exc) or exc.__class__.__name__)

    def execute_in_background(self, line: str, context: ShellContext) -> str:
        """Start `line` as a background job and return its id.

        Must be called from a running event loop. The job works on a
        snapshot of `context` taken here.
        """
        running = len(self.running_jobs())
        if running >= self._max_concurrent_jobs:
            logger.warning("job.rejected running={} limit={}", running, self._max_concurrent_jobs)
            raise ConcurrencyLimitExceeded(self._max_concurrent_jobs)

        text, _ = strip_background(line)
        words = tokenize(text)
        job = Job(
            id=self._new_id(),
            line=text,
            command=words[0] if words else "",
            args=words[1:],
        )
        self._jobs[job.id] = job
        job.task = asyncio.get_running_loop().create_task(self._run_job(job, context.snapshot()), name=f"job-{job.id}")
        self._events.emit("job_start", self, job=job)
        return job.id

    def _new_id(self) -> str:
        while True:
            job_id = uuid.uuid4().hex[:8]
            if job_id not in self._jobs:
                return job_id

    async def _run_job(self, job: Job, context: ShellContext) -> ExecutionResult:
        with logger.contextualize(job=job.id):
            logger.info("job.start id={} line={}", job.id, job.line)
            if job.token.cancelled:
                return self._finish(job, _cancelled_result(job))
            try:
                result = await job.token.guard(self.execute(job.line, context, token=job.token))
            except asyncio.CancelledError:
                if not job.token.cancelled:
                    raise
                result = _cancelled_result(job)
            except Exception as exc:
                logger.exception("job.error id={}", job.id)
                result = ExecutionResult.failure(str(exc) or exc.__class__.__name__)
            if job.token.cancelled:
                result = _cancelled_result(job)
            return self._finish(job, result)

    def _finish(self, job: Job, result: ExecutionResult) -> ExecutionResult:
        if job.status.is_terminal and job.result is not None:
            return job.result
        if job.token.cancelled:
            status = JobStatus.CANCELLED
        elif result.success:
            status = JobStatus.COMPLETED
        else:
            status = JobStatus.FAILED
        self._transition(job, status, result)
        return result

    def _transition(self, job: Job, status: JobStatus, result: ExecutionResult) -> None:
        previous = job.status
        job.status = status
        job.end_time = datetime.now(UTC)
        job.exit_code = result.exit_code
        job.output = result.output
        job.error = result.error_message
        job.result = result
        logger.info("job.end id={} status={} exit_code={}", job.id, status, result.exit_code)
        self._events.emit("job_status_change", self, job=job, previous=previous)
        self._events.emit("job_end", self, job=job, result=result)
        self._schedule_eviction(job.id)

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a running job. Returns False for unknown or finished jobs."""
        job = self._jobs.get(job_id)
        if job is None or job.status.is_terminal:
            return False
        job.cancel()
        self._transition(job, JobStatus.CANCELLED, _cancelled_result(job))
        return True

    kill_job = cancel_job

    async def foreground_job(self, job_id: str) -> ExecutionResult:
        """Wait for a job and return its result; finished jobs return the stored one."""
        job = self._jobs.get(job_id)
        if job is None:
            return ExecutionResult.failure(str(JobNotFoundError(job_id)))
        if job.result is not None:
            return job.result
        if job.task is None:
            return ExecutionResult.failure(f"Job {job_id} has no running task")
        return await asyncio.shield(job.task)

    def background_job(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        return job is not None and job.status is JobStatus.RUNNING

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    def jobs(self) -> list[Job]:
        return sorted(self._jobs.values(), key=lambda job: job.start_time)

    def running_jobs(self) -> list[Job]:
        return [job for job in self._jobs.values() if job.status is JobStatus.RUNNING]

    def get_job_history(self, limit: int = 50) -> list[Job]:
        """Finished jobs, newest first."""
        finished = [job for job in self._jobs.values() if job.status.is_terminal]
        finished.sort(key=lambda job: job.start_time, reverse=True)
        return finished[:limit]

    def clear_completed_jobs(self) -> int:
        finished = [job_id for job_id, job in self._jobs.items() if job.status.is_terminal]
        for job_id in finished:
            del self._jobs[job_id]
            self._unschedule_eviction(job_id)
        logger.info("job.cleared count={}", len(finished))
        return len(finished)

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop(), timezone=UTC)
            self._scheduler.start()
        return self._scheduler

    def _schedule_eviction(self, job_id: str) -> None:
        run_date = datetime.now(UTC) + timedelta(seconds=self._retention_seconds)
        self._ensure_scheduler().add_job(
            self._evict,
            trigger=DateTrigger(run_date=run_date),
            id=f"evict-{job_id}",
            args=[job_id],
            replace_existing=True,
            misfire_grace_time=None,
        )

    def _unschedule_eviction(self, job_id: str) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(f"evict-{job_id}")
        except JobLookupError:
            pass

    async def _evict(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is not None and job.status.is_terminal:
            del self._jobs[job_id]
            logger.debug("job.evicted id={}", job_id)

    async def shutdown(self) -> None:
        """Cancel running jobs and stop the eviction scheduler."""
        tasks = [job.task for job in self.running_jobs() if job.task is not None]
        for job in self.running_jobs():
            self.cancel_job(job.id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
