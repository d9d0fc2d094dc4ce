"""
Durable "last run" records for scheduler jobs.
"""

import json

from app.db.helpers import execute_query
from app.models.domain.job_domain import JobRun


class JobRunRepository:
    async def insert(self, run: JobRun) -> None:
        await execute_query(
            """
            INSERT INTO job_runs (
                job_name, trigger, status, started_at, finished_at, duration_ms, result, error
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                run.job_name,
                run.trigger.value,
                run.status.value,
                run.started_at,
                run.finished_at,
                run.duration_ms,
                json.dumps(run.result, default=str),
                run.error,
            ),
        )

    async def delete_older_than(self, days: int) -> int:
        return await execute_query(
            "DELETE FROM job_runs WHERE started_at < NOW() - make_interval(days => %s)",
            (days,),
        )
