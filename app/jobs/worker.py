"""
Background process entrypoint.

Commands (CLI argument or WORKER_COMMAND environment variable):

    scheduler            run the cron scheduler until SIGINT/SIGTERM (default)
    worker               run an arq worker that executes queued job firings
    run <job> [options]  run one job immediately and print its result
"""

import argparse
import asyncio
import json
import os
import signal
from datetime import date

from arq.connections import RedisSettings
from arq.worker import run_worker

from app.config import settings
from app.db.pool import db_pool
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.handlers import build_job_context, build_scheduler
from app.jobs.queue import build_job_queue
from app.jobs.scheduler import JOB_SCHEDULES
from app.models.domain.job_domain import JobRun, JobTrigger

logger = get_logger(__name__)

COMMANDS = ("scheduler", "worker", "run")


async def run_scheduler() -> None:
    """Run every cron job until the process is signalled to stop."""
    await db_pool.initialize()
    ctx = build_job_context(settings)
    queue = await build_job_queue(settings)
    scheduler = build_scheduler(ctx, queue)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    scheduler.start()
    try:
        await stop_event.wait()
        logger.info("Shutdown signal received")
    finally:
        await scheduler.stop()
        await queue.close()
        await ctx.close()
        await db_pool.close()


async def run_once(job_name: str, target_date: date | None = None, account_id: str | None = None) -> JobRun:
    """Run a single job inline, outside the cron timers."""
    await db_pool.initialize()
    ctx = build_job_context(settings)
    scheduler = build_scheduler(ctx)
    try:
        return await scheduler.run_job(job_name, target_date=target_date, account_id=account_id)
    finally:
        await ctx.close()
        await db_pool.close()


# arq worker


async def startup(ctx: dict) -> None:
    setup_logging(settings.LOG_LEVEL)
    await db_pool.initialize()
    job_context = build_job_context(settings)
    ctx["job_context"] = job_context
    ctx["scheduler"] = build_scheduler(job_context)
    logger.info("arq worker started", jobs=sorted(JOB_SCHEDULES))


async def shutdown(ctx: dict) -> None:
    job_context = ctx.get("job_context")
    if job_context is not None:
        await job_context.close()
    await db_pool.close()
    logger.info("arq worker stopped")


async def run_scheduled_job(ctx: dict, job_name: str, fire_time: str) -> dict:
    """Execute one queued firing under the worker's single-flight locks."""
    logger.info("Queued job received", job=job_name, fire_time=fire_time, job_id=ctx.get("job_id"))
    run = await ctx["scheduler"].execute(job_name, JobTrigger.QUEUE)
    return run.to_dict()


class WorkerSettings:
    functions = [run_scheduled_job]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL or "redis://localhost:6379")
    max_jobs = len(JOB_SCHEDULES)
    job_timeout = 3600
    keep_result = 86400


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="cleaning-worker")
    parser.add_argument("command", nargs="?", choices=COMMANDS, default=os.getenv("WORKER_COMMAND", "scheduler"))
    parser.add_argument("job", nargs="?", help="job name for the run command")
    parser.add_argument("--date", type=date.fromisoformat, help="target date (YYYY-MM-DD)")
    parser.add_argument("--account", help="restrict the run to one account id")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint."""
    args = _parse_args(argv)
    setup_logging(settings.LOG_LEVEL)

    if args.command == "worker":
        run_worker(WorkerSettings)
        return

    if args.command == "run":
        if args.job not in JOB_SCHEDULES:
            raise SystemExit(f"Unknown job '{args.job}'. Available jobs: {', '.join(JOB_SCHEDULES)}")
        run = asyncio.run(run_once(args.job, target_date=args.date, account_id=args.account))
        print(json.dumps(run.to_dict(), indent=2, default=str))
        return

    asyncio.run(run_scheduler())


if __name__ == "__main__":
    main()
