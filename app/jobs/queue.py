"""
Job submission backends for the scheduler.

The scheduler only talks to ``JobQueue``. ``SynchronousQueue`` runs the job in
the scheduler's own process; ``AsyncQueue`` hands it to an arq worker through
Redis, with one deterministic job id per (job, fire time) so two scheduler
processes firing the same tick enqueue it once.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from redis.exceptions import RedisError

from app.config import Settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.job_domain import JobRun

logger = get_logger(__name__)

QUEUE_FUNCTION = "run_scheduled_job"

JobRunner = Callable[[], Awaitable[JobRun]]


def queue_job_id(job_name: str, fire_time: datetime) -> str:
    return f"{job_name}:{fire_time.isoformat()}"


class JobQueue:
    name = "base"

    async def submit(self, job_name: str, fire_time: datetime, runner: JobRunner) -> JobRun | None:
        """Submit a due job. Returns the run when it executed inline."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class SynchronousQueue(JobQueue):
    name = "synchronous"

    async def submit(self, job_name: str, fire_time: datetime, runner: JobRunner) -> JobRun | None:
        return await runner()


class AsyncQueue(JobQueue):
    name = "arq"

    def __init__(self, redis: ArqRedis):
        self.redis = redis

    @classmethod
    async def connect(cls, redis_url: str) -> "AsyncQueue":
        redis = await create_pool(RedisSettings.from_dsn(redis_url))
        return cls(redis)

    async def submit(self, job_name: str, fire_time: datetime, runner: JobRunner) -> JobRun | None:
        job_id = queue_job_id(job_name, fire_time)
        job = await self.redis.enqueue_job(QUEUE_FUNCTION, job_name, fire_time.isoformat(), _job_id=job_id)
        if job is None:
            logger.info("Job already enqueued for this fire time", job=job_name, job_id=job_id)
        else:
            logger.info("Job enqueued", job=job_name, job_id=job_id)
        return None

    async def close(self) -> None:
        await self.redis.aclose()


async def build_job_queue(settings: Settings) -> JobQueue:
    """arq queue when Redis is configured and reachable, inline execution otherwise."""
    if not settings.REDIS_URL:
        logger.info("REDIS_URL not set, running jobs inline")
        return SynchronousQueue()

    try:
        queue = await AsyncQueue.connect(settings.REDIS_URL)
        await queue.redis.ping()
    except (RedisError, OSError) as e:
        logger.warning("Redis unavailable, falling back to inline job execution", error=str(e))
        return SynchronousQueue()

    logger.info("Using arq job queue")
    return queue
