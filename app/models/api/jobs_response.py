# app/models/api/jobs_response.py
"""
Job status and run response models.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class JobRunResponse(BaseModel):
    job_name: str
    trigger: str
    status: str = Field(..., description="success | partial | failed | skipped")
    started_at: datetime
    finished_at: datetime
    duration_ms: float
    result: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    reason: str | None = None


class JobStatusResponse(BaseModel):
    name: str
    cron: str
    description: str = ""
    is_running: bool
    next_run: datetime | None = None
    last_run: JobRunResponse | None = None


class SchedulerStatusResponse(BaseModel):
    started: bool
    queue: str
    timezone: str
    jobs: list[JobStatusResponse]
