"""
Job API Routes
Scheduler status and the manual "run now" trigger.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.infrastructure.observability.logging import get_logger
from app.jobs.scheduler import Scheduler, UnknownJobError
from app.models.api.jobs_request import RunJobRequest
from app.models.api.jobs_response import JobRunResponse, SchedulerStatusResponse
from app.models.domain.job_domain import JobStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_scheduler(request: Request) -> Scheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Scheduler not available")
    return scheduler


@router.get("", response_model=SchedulerStatusResponse)
async def list_jobs(scheduler: Scheduler = Depends(get_scheduler)):
    """Registered jobs with cron, running flag, next fire time and last run."""
    return scheduler.status()


@router.post("/{job_name}/run", response_model=JobRunResponse)
async def run_job_now(
    job_name: str,
    body: RunJobRequest | None = None,
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Run a job immediately. Returns 409 when the job is already running."""
    body = body or RunJobRequest()

    try:
        run = await scheduler.run_job(job_name, target_date=body.target_date, account_id=body.account_id)
    except UnknownJobError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown job '{job_name}'")

    if run.status == JobStatus.SKIPPED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"job": job_name, "reason": run.reason},
        )

    logger.info("Manual job run finished", job=job_name, status=run.status.value)
    return run.to_dict()
