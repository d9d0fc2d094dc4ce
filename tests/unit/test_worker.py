from datetime import date, datetime, timezone

import pytest

from app.jobs import worker
from app.models.domain.job_domain import JobRun, JobStatus, JobTrigger


class RecordingScheduler:
    def __init__(self):
        self.calls = []

    async def execute(self, name, trigger):
        self.calls.append((name, trigger))
        now = datetime(2024, 11, 23, 10, 0, tzinfo=timezone.utc)
        return JobRun(name, trigger, JobStatus.SUCCESS, now, now, result={"ok": True})


@pytest.mark.asyncio
async def test_queued_firing_runs_through_the_scheduler():
    scheduler = RecordingScheduler()

    result = await worker.run_scheduled_job(
        {"scheduler": scheduler, "job_id": "cleanup:x"}, "cleanup", "2024-11-23T10:00:00+00:00"
    )

    assert scheduler.calls == [("cleanup", JobTrigger.QUEUE)]
    assert result["status"] == "success"
    assert result["trigger"] == "queue"


def test_parse_run_command():
    args = worker._parse_args(["run", "cleaning-notifications", "--date", "2024-11-23", "--account", "a1"])

    assert args.command == "run"
    assert args.job == "cleaning-notifications"
    assert args.date == date(2024, 11, 23)
    assert args.account == "a1"


def test_command_defaults_to_environment(monkeypatch):
    monkeypatch.setenv("WORKER_COMMAND", "worker")

    assert worker._parse_args([]).command == "worker"


def test_run_unknown_job_exits():
    with pytest.raises(SystemExit):
        worker.main(["run", "missing"])


def test_worker_settings_register_the_queue_function():
    assert worker.WorkerSettings.functions == [worker.run_scheduled_job]
    assert worker.WorkerSettings.max_jobs == len(worker.JOB_SCHEDULES)
