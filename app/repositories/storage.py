"""
Storage facade handed to the pipeline and job handlers.

Groups the repositories with the pool's transaction context so services take
one explicit object instead of reaching for module globals.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import psycopg

from app.db.helpers import DatabaseError
from app.db.pool import DatabasePoolManager, db_pool
from app.repositories.job_run_repository import JobRunRepository
from app.repositories.message_log_repository import MessageLogRepository
from app.repositories.processed_event_repository import ProcessedEventRepository
from app.repositories.property_repository import PropertyRepository
from app.repositories.reservation_repository import ReservationRepository
from app.repositories.template_repository import TemplateRepository


class PostgresStorage:
    def __init__(self, pool: DatabasePoolManager = db_pool):
        self.pool = pool
        self.properties = PropertyRepository()
        self.reservations = ReservationRepository()
        self.processed_events = ProcessedEventRepository()
        self.message_logs = MessageLogRepository()
        self.templates = TemplateRepository()
        self.job_runs = JobRunRepository()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Commit on normal exit, roll back when the block raises."""
        try:
            async with self.pool.transaction() as conn:
                yield conn
        except psycopg.Error as e:
            raise DatabaseError(f"Transaction failed: {e}", operation="transaction") from e
