"""
Message template lookup with global fallback.
"""

from app.db.helpers import fetch_one, with_db_retry
from app.models.domain.notification_domain import MessageTemplate
from app.models.domain.property_domain import Channel


class TemplateRepository:
    @with_db_retry()
    async def get(self, template_type: str, channel: Channel, account_id: str | None) -> MessageTemplate | None:
        """Active template for the account, falling back to the global (account-less) one."""
        row = await fetch_one(
            """
            SELECT id, account_id, type, channel, subject, content
            FROM message_templates
            WHERE type = %s
              AND channel = %s
              AND is_active = true
              AND (account_id = %s OR account_id IS NULL)
            ORDER BY account_id NULLS LAST, created_at DESC
            LIMIT 1
            """,
            (template_type, channel.value, account_id),
        )
        if not row:
            return None

        return MessageTemplate(
            id=str(row["id"]),
            account_id=str(row["account_id"]) if row.get("account_id") else None,
            type=row["type"],
            channel=Channel(row["channel"]),
            subject=row.get("subject"),
            content=row["content"],
        )
