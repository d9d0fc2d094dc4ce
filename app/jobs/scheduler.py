"""
Cron-driven job orchestration.

Each registered job gets its own asyncio task that sleeps until the next cron
fire time and submits the job through the configured JobQueue. Runs of the
same job never overlap: a firing (cron or manual) that arrives while the job
is running comes back as a ``skipped`` run. Different jobs run concurrently.
Exceptions from job bodies are caught here and turned into ``failed`` runs.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Any

from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger, log_job_run
from app.jobs.cron import CronSchedule
from app.jobs.queue import JobQueue, SynchronousQueue
from app.models.domain.job_domain import JobInvocation, JobRun, JobStatus, JobTrigger

logger = get_logger(__name__)

JobHandler = Callable[[JobInvocation], Awaitable[dict[str, Any]]]

JOB_SCHEDULES: dict[str, str] = {
    "calendar-sync": "*/30 * * * *",
    "checkin-reminders": "0 8 * * *",
    "checkout-reminders": "0 8 * * *",
    "cleaning-notifications": "0 7 * * *",
    "review-requests": "0 18 * * *",
    "cleanup": "0 3 * * 0",
    "daily-summary": "0 6 * * *",
}


class UnknownJobError(Exception):
    def __init__(self, job_name: str):
        super().__init__(f"Unknown job '{job_name}'")
        self.job_name = job_name


class JobExecutionError(Exception):
    """Raised by a job body when the run as a whole failed."""

    def __init__(self, message: str, result: dict[str, Any] | None = None):
        super().__init__(message)
        self.result = result or {}


@dataclass(slots=True)
class JobDefinition:
    name: str
    cron: CronSchedule
    handler: JobHandler
    description: str = ""


def build_job_definitions(
    handlers: dict[str, JobHandler], overrides: dict[str, str] | None = None
) -> list[JobDefinition]:
    """Pair handlers with their cron schedules, applying per-job overrides."""
    overrides = overrides or {}
    for name in overrides:
        if name not in JOB_SCHEDULES:
            logger.warning("Schedule override for unknown job ignored", job=name)

    definitions = []
    for name, default_cron in JOB_SCHEDULES.items():
        handler = handlers.get(name)
        if handler is None:
            continue
        expression = overrides.get(name, default_cron)
        definitions.append(
            JobDefinition(
                name=name,
                cron=CronSchedule.parse(expression),
                handler=handler,
                description=(handler.__doc__ or "").strip().split("\n")[0],
            )
        )
    return definitions


def _status_from_result(result: dict[str, Any]) -> tuple[JobStatus, str | None]:
    status = result.get("status")
    if status == "partial":
        return JobStatus.PARTIAL, result.get("reason")
    if status == "not_run":
        return JobStatus.FAILED, result.get("reason") or "not_run"
    return JobStatus.SUCCESS, None


class Scheduler:
    """Owns the registered jobs, their timers and per-job single-flight locks."""

    def __init__(
        self,
        jobs: list[JobDefinition],
        timezone: tzinfo,
        queue: JobQueue | None = None,
        run_store=None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.jobs = {job.name: job for job in jobs}
        self.timezone = timezone
        self.queue = queue or SynchronousQueue()
        self.run_store = run_store
        self._clock = clock
        self._locks = {name: asyncio.Lock() for name in self.jobs}
        self._last_runs: dict[str, JobRun] = {}
        self._next_fire: dict[str, datetime] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(self.timezone)

    @property
    def started(self) -> bool:
        return bool(self._tasks)

    def get(self, name: str) -> JobDefinition:
        job = self.jobs.get(name)
        if job is None:
            raise UnknownJobError(name)
        return job

    def is_running(self, name: str) -> bool:
        self.get(name)
        return self._locks[name].locked()

    def last_run(self, name: str) -> JobRun | None:
        return self._last_runs.get(name)

    async def execute(
        self,
        name: str,
        trigger: JobTrigger = JobTrigger.CRON,
        target_date: date | None = None,
        account_id: str | None = None,
    ) -> JobRun:
        """
        Run a job once under its single-flight lock.

        Returns:
            The finished JobRun; never raises for job-body errors

        Raises:
            UnknownJobError: If no job is registered under ``name``
        """
        job = self.get(name)
        lock = self._locks[name]

        if lock.locked():
            now = self.now()
            run = JobRun(
                job_name=name,
                trigger=trigger,
                status=JobStatus.SKIPPED,
                started_at=now,
                finished_at=now,
                reason="already_running",
            )
            logger.warning("Job already running, skipping this firing", job=name, trigger=trigger.value)
            return run

        async with lock:
            started_at = self.now()
            logger.info("Job started", job=name, trigger=trigger.value, target_date=str(target_date or ""))
            invocation = JobInvocation(trigger=trigger, target_date=target_date, account_id=account_id)

            try:
                result = await job.handler(invocation)
                status, reason = _status_from_result(result)
                run = JobRun(
                    job_name=name,
                    trigger=trigger,
                    status=status,
                    started_at=started_at,
                    finished_at=self.now(),
                    result=result,
                    reason=reason,
                )
            except JobExecutionError as e:
                run = JobRun(
                    job_name=name,
                    trigger=trigger,
                    status=JobStatus.FAILED,
                    started_at=started_at,
                    finished_at=self.now(),
                    result=e.result,
                    error=str(e),
                )
            except Exception as e:
                logger.error("Job raised", job=name, error=str(e), error_type=type(e).__name__, exc_info=True)
                run = JobRun(
                    job_name=name,
                    trigger=trigger,
                    status=JobStatus.FAILED,
                    started_at=started_at,
                    finished_at=self.now(),
                    error=f"{type(e).__name__}: {e}",
                )

            self._last_runs[name] = run
            log_job_run(
                job=name,
                status=run.status.value,
                duration_ms=run.duration_ms,
                trigger=trigger.value,
                result=run.result,
                error=run.error,
            )
            await self._persist(run)
            return run

    async def run_job(
        self, name: str, target_date: date | None = None, account_id: str | None = None
    ) -> JobRun:
        """Manual trigger, subject to the same single-flight guard as cron firings."""
        return await self.execute(name, JobTrigger.MANUAL, target_date=target_date, account_id=account_id)

    async def _persist(self, run: JobRun) -> None:
        if self.run_store is None:
            return
        try:
            await self.run_store.insert(run)
        except DatabaseError as e:
            logger.warning("Could not persist job run", job=run.job_name, error=str(e))

    async def _loop(self, job: JobDefinition) -> None:
        last_fire: datetime | None = None
        while True:
            now = self.now()
            # A sleep that wakes early must not yield the same tick twice
            fire_time = job.cron.next_after(max(now, last_fire) if last_fire else now)
            self._next_fire[job.name] = fire_time
            await asyncio.sleep(max((fire_time - now).total_seconds(), 0))
            last_fire = fire_time

            try:
                await self.queue.submit(
                    job.name, fire_time, lambda: self.execute(job.name, JobTrigger.CRON)
                )
            except Exception as e:
                logger.error(
                    "Job submission failed", job=job.name, queue=self.queue.name, error=str(e)
                )

    def start(self) -> None:
        """Create one timer task per job. Calling start twice is a no-op."""
        if self._tasks:
            return
        for job in self.jobs.values():
            self._tasks[job.name] = asyncio.create_task(self._loop(job), name=f"scheduler:{job.name}")
        logger.info(
            "Scheduler started",
            jobs=sorted(self.jobs),
            queue=self.queue.name,
            timezone=str(self.timezone),
        )

    async def stop(self) -> None:
        """Cancel timers and wait for in-flight inline runs to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._next_fire.clear()
        logger.info("Scheduler stopped")

    def status(self) -> dict[str, Any]:
        jobs = []
        for name, job in self.jobs.items():
            last = self._last_runs.get(name)
            next_fire = self._next_fire.get(name)
            jobs.append(
                {
                    "name": name,
                    "cron": job.cron.expression,
                    "description": job.description,
                    "is_running": self._locks[name].locked(),
                    "next_run": next_fire.isoformat() if next_fire else None,
                    "last_run": last.to_dict() if last else None,
                }
            )
        return {
            "started": self.started,
            "queue": self.queue.name,
            "timezone": str(self.timezone),
            "jobs": jobs,
        }
