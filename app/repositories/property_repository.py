"""
Read-only access to properties, their calendars and assigned recipients.
"""

from app.db.helpers import execute_query, fetch_all, with_db_retry
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import SourcePlatform
from app.models.domain.property_domain import CalendarSource, Channel, Property, Recipient

logger = get_logger(__name__)


class PropertyRepository:
    PROPERTY_COLUMNS = """
        p.id, p.account_id, p.name, p.checkout_time, p.checkin_time,
        p.wifi_name, p.wifi_password, p.access_instructions, p.is_active
    """

    @staticmethod
    def _row_to_recipient(row: dict) -> Recipient:
        return Recipient(
            id=str(row["id"]),
            account_id=str(row["account_id"]),
            name=row["name"],
            phone=row["phone"],
            email=row.get("email"),
            channel=Channel(row.get("channel") or Channel.WHATSAPP),
        )

    @with_db_retry()
    async def list_active(self, account_id: str | None = None) -> list[Property]:
        """Active properties with calendars and recipients, optionally scoped to one account."""
        where = "WHERE p.is_active = true"
        params: tuple = ()
        if account_id:
            where += " AND p.account_id = %s"
            params = (account_id,)

        property_rows = await fetch_all(
            f"SELECT {self.PROPERTY_COLUMNS} FROM properties p {where} ORDER BY p.name",
            params,
        )
        if not property_rows:
            return []

        property_ids = [row["id"] for row in property_rows]

        calendar_rows = await fetch_all(
            """
            SELECT property_id, platform, url
            FROM property_calendars
            WHERE is_active = true AND property_id = ANY(%s)
            """,
            (property_ids,),
        )
        recipient_rows = await fetch_all(
            """
            SELECT pr.property_id, r.id, r.account_id, r.name, r.phone, r.email, r.channel
            FROM property_recipients pr
            JOIN recipients r ON r.id = pr.recipient_id
            WHERE pr.property_id = ANY(%s)
            ORDER BY r.name
            """,
            (property_ids,),
        )

        calendars: dict[str, list[CalendarSource]] = {}
        for row in calendar_rows:
            calendars.setdefault(str(row["property_id"]), []).append(
                CalendarSource(url=row["url"], platform=SourcePlatform.from_value(row["platform"]))
            )

        recipients: dict[str, list[Recipient]] = {}
        for row in recipient_rows:
            recipients.setdefault(str(row["property_id"]), []).append(self._row_to_recipient(row))

        properties = []
        for row in property_rows:
            pid = str(row["id"])
            properties.append(
                Property(
                    id=pid,
                    account_id=str(row["account_id"]),
                    name=row["name"],
                    calendars=calendars.get(pid, []),
                    recipients=recipients.get(pid, []),
                    checkout_time=row.get("checkout_time"),
                    checkin_time=row.get("checkin_time"),
                    active=row["is_active"],
                    wifi_name=row.get("wifi_name"),
                    wifi_password=row.get("wifi_password"),
                    access_instructions=row.get("access_instructions"),
                )
            )

        logger.debug("Active properties loaded", count=len(properties), account_id=account_id)
        return properties

    async def touch_last_sync(self, property_id: str) -> None:
        await execute_query(
            "UPDATE properties SET last_sync_at = NOW() WHERE id = %s",
            (property_id,),
        )
