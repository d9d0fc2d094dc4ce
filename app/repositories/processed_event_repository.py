"""
Deduplication ledger.

One row per (property, event uid, event date, event type). Claims are atomic
insert-if-absent statements so concurrent runs (a cron firing while a manual
run is in flight) can never both claim the same event.
"""

import psycopg

from app.db.helpers import execute_query, fetch_one
from app.infrastructure.observability.logging import get_logger
from app.models.domain.notification_domain import ProcessedEventKey

logger = get_logger(__name__)


class ProcessedEventRepository:
    async def is_processed(
        self, key: ProcessedEventKey, *, connection: psycopg.AsyncConnection | None = None
    ) -> bool:
        row = await fetch_one(
            """
            SELECT 1 AS found
            FROM processed_events
            WHERE property_id = %s AND event_uid = %s AND event_date = %s AND event_type = %s
            """,
            (key.property_id, key.event_uid, key.event_date, key.event_type.value),
            connection=connection,
        )
        return row is not None

    async def mark_processed(
        self, key: ProcessedEventKey, *, connection: psycopg.AsyncConnection | None = None
    ) -> bool:
        """
        Claim an event.

        Returns:
            True if this call inserted the row, False if it already existed
            (another execution handled the event).
        """
        row = await fetch_one(
            """
            INSERT INTO processed_events (property_id, event_uid, event_date, event_type)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT ON CONSTRAINT uq_processed_events_identity DO NOTHING
            RETURNING id
            """,
            (key.property_id, key.event_uid, key.event_date, key.event_type.value),
            connection=connection,
        )
        if row is None:
            logger.debug(
                "Event already claimed",
                property_id=key.property_id,
                event_uid=key.event_uid,
                event_date=key.event_date.isoformat(),
                event_type=key.event_type.value,
            )
            return False
        return True

    async def release(
        self, key: ProcessedEventKey, *, connection: psycopg.AsyncConnection | None = None
    ) -> None:
        """Drop a claim so the next run picks the event up again."""
        await execute_query(
            """
            DELETE FROM processed_events
            WHERE property_id = %s AND event_uid = %s AND event_date = %s AND event_type = %s
            """,
            (key.property_id, key.event_uid, key.event_date, key.event_type.value),
            connection=connection,
        )
        logger.info(
            "Event claim released",
            property_id=key.property_id,
            event_uid=key.event_uid,
            event_date=key.event_date.isoformat(),
        )

    async def delete_older_than(self, days: int) -> int:
        deleted = await execute_query(
            "DELETE FROM processed_events WHERE processed_at < NOW() - make_interval(days => %s)",
            (days,),
        )
        logger.info("Old processed events deleted", count=deleted, retention_days=days)
        return deleted
