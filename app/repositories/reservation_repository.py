"""
Reservations materialized by the calendar-sync job and read by the guest
reminder / review jobs.
"""

from datetime import date, datetime, time, timedelta, tzinfo

from app.db.helpers import fetch_all, fetch_one, fetch_val
from app.models.domain.calendar_domain import SourcePlatform
from app.models.domain.property_domain import Reservation

ACTIVE_STATUSES = ("confirmed", "checked_in")


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """[start, end) of a local calendar day as aware datetimes."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


class ReservationRepository:
    COLUMNS = """
        id, property_id, account_id, external_id, platform, guest_name, guest_phone,
        guest_email, confirmation_code, checkin_at, checkout_at, status,
        adults, children, total_amount
    """

    @staticmethod
    def _row_to_reservation(row: dict) -> Reservation:
        return Reservation(
            id=str(row["id"]),
            property_id=str(row["property_id"]),
            account_id=str(row["account_id"]),
            external_id=row["external_id"],
            platform=SourcePlatform.from_value(row["platform"]),
            checkin_at=row["checkin_at"],
            checkout_at=row["checkout_at"],
            guest_name=row.get("guest_name"),
            guest_phone=row.get("guest_phone"),
            guest_email=row.get("guest_email"),
            confirmation_code=row.get("confirmation_code"),
            status=row["status"],
            adults=row.get("adults"),
            children=row.get("children"),
            total_amount=row.get("total_amount"),
        )

    async def upsert(self, reservation: Reservation) -> str:
        """
        Insert or refresh a reservation keyed by (property_id, external_id).

        Returns:
            "created", "updated" or "unchanged"
        """
        row = await fetch_one(
            """
            INSERT INTO reservations (
                property_id, account_id, external_id, platform, guest_name, guest_phone,
                confirmation_code, checkin_at, checkout_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (property_id, external_id) DO UPDATE
            SET checkin_at = EXCLUDED.checkin_at,
                checkout_at = EXCLUDED.checkout_at,
                guest_name = COALESCE(EXCLUDED.guest_name, reservations.guest_name),
                guest_phone = COALESCE(EXCLUDED.guest_phone, reservations.guest_phone),
                confirmation_code = COALESCE(EXCLUDED.confirmation_code, reservations.confirmation_code),
                updated_at = NOW()
            WHERE reservations.checkin_at IS DISTINCT FROM EXCLUDED.checkin_at
               OR reservations.checkout_at IS DISTINCT FROM EXCLUDED.checkout_at
               OR COALESCE(EXCLUDED.guest_name, reservations.guest_name) IS DISTINCT FROM reservations.guest_name
               OR COALESCE(EXCLUDED.guest_phone, reservations.guest_phone) IS DISTINCT FROM reservations.guest_phone
               OR COALESCE(EXCLUDED.confirmation_code, reservations.confirmation_code)
                  IS DISTINCT FROM reservations.confirmation_code
            RETURNING (xmax = 0) AS inserted
            """,
            (
                reservation.property_id,
                reservation.account_id,
                reservation.external_id,
                reservation.platform.value,
                reservation.guest_name,
                reservation.guest_phone,
                reservation.confirmation_code,
                reservation.checkin_at,
                reservation.checkout_at,
            ),
        )
        if row is None:
            return "unchanged"
        return "created" if row["inserted"] else "updated"

    async def _list_between(self, column: str, day: date, tz: tzinfo, account_id: str | None) -> list[Reservation]:
        start, end = day_bounds(day, tz)
        query = f"""
            SELECT {self.COLUMNS}
            FROM reservations
            WHERE {column} >= %s AND {column} < %s
              AND status = ANY(%s)
        """
        params: tuple = (start, end, list(ACTIVE_STATUSES))
        if account_id:
            query += " AND account_id = %s"
            params += (account_id,)
        query += f" ORDER BY {column}"

        rows = await fetch_all(query, params)
        return [self._row_to_reservation(row) for row in rows]

    async def list_checkins_on(self, day: date, tz: tzinfo, account_id: str | None = None) -> list[Reservation]:
        return await self._list_between("checkin_at", day, tz, account_id)

    async def list_checkouts_on(self, day: date, tz: tzinfo, account_id: str | None = None) -> list[Reservation]:
        return await self._list_between("checkout_at", day, tz, account_id)

    async def count_active(self, account_id: str | None = None) -> int:
        query = "SELECT COUNT(*) FROM reservations WHERE status = ANY(%s) AND checkout_at >= NOW()"
        params: tuple = (list(ACTIVE_STATUSES),)
        if account_id:
            query += " AND account_id = %s"
            params += (account_id,)
        return int(await fetch_val(query, params) or 0)
