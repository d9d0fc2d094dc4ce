"""
Append-only message audit log.
"""

import psycopg

from app.db.helpers import execute_query
from app.models.domain.notification_domain import MessageLog


class MessageLogRepository:
    async def insert(
        self, log: MessageLog, *, connection: psycopg.AsyncConnection | None = None
    ) -> None:
        await execute_query(
            """
            INSERT INTO message_log (
                property_id, account_id, recipient, channel, message_type,
                message_body, status, provider_message_id, error
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                log.property_id,
                log.account_id,
                log.recipient,
                log.channel.value,
                log.message_type,
                log.body,
                log.status.value,
                log.provider_message_id,
                (log.error or "")[:500] or None,
            ),
            connection=connection,
        )

    async def delete_older_than(self, days: int) -> int:
        return await execute_query(
            "DELETE FROM message_log WHERE created_at < NOW() - make_interval(days => %s)",
            (days,),
        )
