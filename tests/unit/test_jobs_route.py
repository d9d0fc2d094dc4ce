"""
Tests for the job status and manual trigger endpoints.
"""

from datetime import datetime

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.jobs.cron import CronSchedule
from app.jobs.scheduler import JobDefinition, Scheduler
from app.models.domain.job_domain import JobRun, JobStatus, JobTrigger
from app.routes import jobs


@pytest.fixture
def seen():
    return []


@pytest.fixture
def scheduler(tz, seen):
    async def cleaning(invocation):
        """Notify cleaning staff about today's checkouts."""
        seen.append(invocation)
        return {"status": "clean", "messages_sent": 2}

    return Scheduler(
        [JobDefinition("cleaning-notifications", CronSchedule.parse("0 7 * * *"), cleaning, "Notify cleaning staff")],
        tz,
    )


@pytest.fixture
def client(scheduler):
    app = FastAPI()
    app.include_router(jobs.router)
    app.state.scheduler = scheduler
    return TestClient(app)


def test_list_jobs(client):
    response = client.get("/jobs")

    assert response.status_code == 200
    data = response.json()
    assert data["started"] is False
    assert data["queue"] == "synchronous"
    assert data["timezone"] == "America/Sao_Paulo"
    assert data["jobs"][0]["name"] == "cleaning-notifications"
    assert data["jobs"][0]["cron"] == "0 7 * * *"
    assert data["jobs"][0]["last_run"] is None


def test_run_job_now(client, seen):
    response = client.post("/jobs/cleaning-notifications/run", json={"target_date": "2024-11-23", "account_id": "a1"})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "success"
    assert data["trigger"] == "manual"
    assert data["result"]["messages_sent"] == 2
    assert seen[0].target_date.isoformat() == "2024-11-23"
    assert seen[0].account_id == "a1"


def test_run_job_without_body(client):
    response = client.post("/jobs/cleaning-notifications/run")

    assert response.status_code == 200
    assert client.get("/jobs").json()["jobs"][0]["last_run"]["status"] == "success"


def test_unknown_job_is_404(client):
    response = client.post("/jobs/nope/run")

    assert response.status_code == 404


def test_running_job_is_409(client, scheduler, tz, monkeypatch):
    async def skipped(name, target_date=None, account_id=None):
        now = datetime.now(tz)
        return JobRun(name, JobTrigger.MANUAL, JobStatus.SKIPPED, now, now, reason="already_running")

    monkeypatch.setattr(scheduler, "run_job", skipped)

    response = client.post("/jobs/cleaning-notifications/run")

    assert response.status_code == 409
    assert response.json()["detail"] == {"job": "cleaning-notifications", "reason": "already_running"}


def test_missing_scheduler_is_503():
    app = FastAPI()
    app.include_router(jobs.router)

    response = TestClient(app).get("/jobs")

    assert response.status_code == 503
