"""
FastAPI application: job trigger API and health endpoints.

The lifespan builds the job context, the job queue and the scheduler once per
process. Cron timers start only when SCHEDULER_ENABLED is set, so the API can
run next to a dedicated scheduler process without double firing.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.handlers import build_job_context, build_scheduler
from app.jobs.queue import build_job_queue
from app.routes import health, jobs

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    await db_pool.initialize()
    try:
        job_context = build_job_context(settings)
        queue = await build_job_queue(settings)
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        await db_pool.close()
        raise

    scheduler = build_scheduler(job_context, queue)
    app.state.job_context = job_context
    app.state.scheduler = scheduler

    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Scheduler timers disabled, manual triggers only")

    yield

    logger.info("Application shutting down")
    shutdown_errors = []

    await scheduler.stop()

    try:
        await queue.close()
    except Exception as e:
        logger.error("Error closing job queue", error=str(e))
        shutdown_errors.append(f"Queue: {e}")

    await job_context.close()

    try:
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Checkout Cleaning Notifier",
    description="Calendar sync and cleaning notification scheduler for short-term rentals",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(jobs.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
