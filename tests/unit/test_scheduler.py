"""
Scheduler tests: single-flight guard, failure isolation, run persistence and timers.
"""

import asyncio
from datetime import datetime

import pytest

from app.db.helpers import DatabaseError
from app.jobs.cron import CronSchedule
from app.jobs.queue import SynchronousQueue
from app.jobs.scheduler import (
    JOB_SCHEDULES,
    JobDefinition,
    JobExecutionError,
    Scheduler,
    UnknownJobError,
    build_job_definitions,
)
from app.models.domain.job_domain import JobStatus, JobTrigger


def job(name: str, handler, cron: str = "0 7 * * *") -> JobDefinition:
    return JobDefinition(name=name, cron=CronSchedule.parse(cron), handler=handler)


async def ok(invocation):
    return {"done": True}


@pytest.mark.asyncio
async def test_overlapping_firing_is_skipped(tz):
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow(invocation):
        started.set()
        await release.wait()
        return {"done": True}

    scheduler = Scheduler([job("calendar-sync", slow)], tz)
    first = asyncio.create_task(scheduler.execute("calendar-sync"))
    await started.wait()

    assert scheduler.is_running("calendar-sync")
    second = await scheduler.run_job("calendar-sync")

    assert second.status == JobStatus.SKIPPED
    assert second.reason == "already_running"
    assert second.trigger == JobTrigger.MANUAL

    release.set()
    run = await first
    assert run.status == JobStatus.SUCCESS
    assert not scheduler.is_running("calendar-sync")


@pytest.mark.asyncio
async def test_different_jobs_run_concurrently(tz):
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow(invocation):
        started.set()
        await release.wait()
        return {}

    scheduler = Scheduler([job("calendar-sync", slow), job("daily-summary", ok)], tz)
    blocked = asyncio.create_task(scheduler.execute("calendar-sync"))
    await started.wait()

    run = await scheduler.run_job("daily-summary")

    assert run.status == JobStatus.SUCCESS
    release.set()
    await blocked


@pytest.mark.asyncio
async def test_exception_becomes_failed_run(tz):
    async def broken(invocation):
        raise RuntimeError("boom")

    scheduler = Scheduler([job("cleanup", broken), job("daily-summary", ok)], tz)

    run = await scheduler.run_job("cleanup")

    assert run.status == JobStatus.FAILED
    assert run.error == "RuntimeError: boom"
    assert (await scheduler.run_job("daily-summary")).status == JobStatus.SUCCESS
    assert (await scheduler.run_job("cleanup")).status == JobStatus.FAILED


@pytest.mark.asyncio
async def test_job_execution_error_keeps_its_result(tz):
    async def failing(invocation):
        raise JobExecutionError("nothing written", result={"written": 0})

    scheduler = Scheduler([job("cleanup", failing)], tz)

    run = await scheduler.run_job("cleanup")

    assert run.status == JobStatus.FAILED
    assert run.result == {"written": 0}
    assert run.error == "nothing written"


@pytest.mark.parametrize(
    "result, status, reason",
    [
        ({"status": "clean"}, JobStatus.SUCCESS, None),
        ({"status": "no_events", "reason": "no_active_properties"}, JobStatus.SUCCESS, None),
        ({"status": "partial", "reason": "calendar_or_write_failures"}, JobStatus.PARTIAL, "calendar_or_write_failures"),
        ({"status": "not_run", "reason": "channel_disconnected: whatsapp"}, JobStatus.FAILED, "channel_disconnected: whatsapp"),
    ],
)
@pytest.mark.asyncio
async def test_result_status_mapping(tz, result, status, reason):
    async def handler(invocation):
        return result

    run = await Scheduler([job("cleaning-notifications", handler)], tz).run_job("cleaning-notifications")

    assert run.status == status
    assert run.reason == reason


@pytest.mark.asyncio
async def test_invocation_arguments_reach_the_handler(tz):
    seen = []

    async def handler(invocation):
        seen.append(invocation)
        return {}

    scheduler = Scheduler([job("cleaning-notifications", handler)], tz)
    target = datetime(2024, 11, 24).date()

    await scheduler.run_job("cleaning-notifications", target_date=target, account_id="acct-1")

    assert seen[0].trigger == JobTrigger.MANUAL
    assert seen[0].target_date == target
    assert seen[0].account_id == "acct-1"


@pytest.mark.asyncio
async def test_unknown_job(tz):
    scheduler = Scheduler([job("cleanup", ok)], tz)

    with pytest.raises(UnknownJobError):
        await scheduler.run_job("nope")


@pytest.mark.asyncio
async def test_runs_are_persisted(tz, storage):
    scheduler = Scheduler([job("cleanup", ok)], tz, run_store=storage.job_runs)

    run = await scheduler.run_job("cleanup")

    assert storage.job_runs.rows == [run]
    assert scheduler.last_run("cleanup") is run


@pytest.mark.asyncio
async def test_run_store_failure_does_not_fail_the_run(tz, storage):
    async def broken_insert(run):
        raise DatabaseError("db down", operation="insert_job_run")

    storage.job_runs.insert = broken_insert
    scheduler = Scheduler([job("cleanup", ok)], tz, run_store=storage.job_runs)

    run = await scheduler.run_job("cleanup")

    assert run.status == JobStatus.SUCCESS


@pytest.mark.asyncio
async def test_timer_fires_through_the_queue(tz):
    fired = asyncio.Event()
    triggers = []

    async def handler(invocation):
        triggers.append(invocation.trigger)
        fired.set()
        return {}

    scheduler = Scheduler(
        [job("daily-summary", handler, cron="0 7 * * *")],
        tz,
        queue=SynchronousQueue(),
        clock=lambda: datetime(2024, 11, 23, 6, 59, 59, 950000, tzinfo=tz),
    )

    scheduler.start()
    assert scheduler.started
    await asyncio.wait_for(fired.wait(), timeout=5)
    status = scheduler.status()
    await scheduler.stop()

    assert triggers[0] == JobTrigger.CRON
    assert status["queue"] == "synchronous"
    assert status["jobs"][0]["next_run"] == "2024-11-24T07:00:00-03:00"
    assert not scheduler.started
    assert scheduler.status()["jobs"][0]["next_run"] is None


@pytest.mark.asyncio
async def test_frozen_clock_fires_each_tick_once(tz):
    fired = asyncio.Event()
    triggers = []

    async def handler(invocation):
        triggers.append(invocation.trigger)
        fired.set()
        return {}

    scheduler = Scheduler(
        [job("daily-summary", handler, cron="0 7 * * *")],
        tz,
        queue=SynchronousQueue(),
        clock=lambda: datetime(2024, 11, 23, 6, 59, 59, 950000, tzinfo=tz),
    )

    scheduler.start()
    await asyncio.wait_for(fired.wait(), timeout=5)
    await asyncio.sleep(0.2)
    status = scheduler.status()
    await scheduler.stop()

    assert triggers == [JobTrigger.CRON]
    assert status["jobs"][0]["next_run"] == "2024-11-24T07:00:00-03:00"


@pytest.mark.asyncio
async def test_status_lists_every_job(tz):
    scheduler = Scheduler([job("cleanup", ok, cron="0 3 * * 0"), job("daily-summary", ok)], tz)
    await scheduler.run_job("cleanup")

    status = scheduler.status()

    assert status["started"] is False
    assert [j["name"] for j in status["jobs"]] == ["cleanup", "daily-summary"]
    assert status["jobs"][0]["cron"] == "0 3 * * 0"
    assert status["jobs"][0]["last_run"]["status"] == "success"
    assert status["jobs"][1]["last_run"] is None


def test_build_job_definitions_applies_overrides():
    async def cleanup(invocation):
        """Prune old rows.

        Longer explanation.
        """
        return {}

    definitions = build_job_definitions(
        {"cleanup": cleanup, "daily-summary": ok},
        overrides={"cleanup": "0 4 * * *", "bogus": "* * * * *"},
    )

    by_name = {d.name: d for d in definitions}
    assert set(by_name) == {"cleanup", "daily-summary"}
    assert by_name["cleanup"].cron.expression == "0 4 * * *"
    assert by_name["cleanup"].description == "Prune old rows."
    assert by_name["daily-summary"].cron.expression == JOB_SCHEDULES["daily-summary"]


def test_default_schedules_cover_seven_jobs():
    assert set(JOB_SCHEDULES) == {
        "calendar-sync",
        "checkin-reminders",
        "checkout-reminders",
        "cleaning-notifications",
        "review-requests",
        "cleanup",
        "daily-summary",
    }
    for expression in JOB_SCHEDULES.values():
        CronSchedule.parse(expression)
