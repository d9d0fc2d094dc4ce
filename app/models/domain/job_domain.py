# app/models/domain/job_domain.py
"""
Scheduler job run records.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class JobTrigger(StrEnum):
    CRON = "cron"
    MANUAL = "manual"
    QUEUE = "queue"


@dataclass(slots=True)
class JobRun:
    job_name: str
    trigger: JobTrigger
    status: JobStatus
    started_at: datetime
    finished_at: datetime
    result: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    reason: str | None = None

    @property
    def duration_ms(self) -> float:
        return (self.finished_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_name": self.job_name,
            "trigger": self.trigger.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration_ms": round(self.duration_ms, 2),
            "result": self.result,
            "error": self.error,
            "reason": self.reason,
        }


@dataclass(slots=True)
class JobInvocation:
    """Arguments a job handler receives for one run."""

    trigger: JobTrigger = JobTrigger.CRON
    target_date: date | None = None
    account_id: str | None = None
