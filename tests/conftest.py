from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from app.models.domain.calendar_domain import CalendarEvent, CacheMeta, FetchResult, SourcePlatform
from app.models.domain.notification_domain import ChannelStatus, MessageStatus
from app.models.domain.property_domain import CalendarSource, Channel, Property, Recipient
from app.repositories.reservation_repository import day_bounds
from app.services.notifications.channels import ChannelError, ChannelRegistry, NotificationChannel

SAO_PAULO = ZoneInfo("America/Sao_Paulo")


class FakePropertyRepository:
    def __init__(self):
        self.properties: list[Property] = []
        self.synced: list[str] = []

    async def list_active(self, account_id: str | None = None) -> list[Property]:
        return [
            p for p in self.properties if p.active and (account_id is None or p.account_id == account_id)
        ]

    async def touch_last_sync(self, property_id: str) -> None:
        self.synced.append(property_id)


class FakeLedger:
    def __init__(self):
        self.rows: set = set()

    async def is_processed(self, key, *, connection=None) -> bool:
        return key in self.rows

    async def mark_processed(self, key, *, connection=None) -> bool:
        if key in self.rows:
            return False
        self.rows.add(key)
        return True

    async def release(self, key, *, connection=None) -> None:
        self.rows.discard(key)

    async def delete_older_than(self, days: int) -> int:
        return 0


class FakeMessageLogs:
    def __init__(self):
        self.rows: list = []

    async def insert(self, log, *, connection=None) -> None:
        self.rows.append(log)

    def with_status(self, status: MessageStatus) -> list:
        return [row for row in self.rows if row.status == status]

    async def delete_older_than(self, days: int) -> int:
        return 0


class FakeTemplates:
    def __init__(self):
        self.templates: list = []

    async def get(self, template_type, channel, account_id):
        matches = [
            t
            for t in self.templates
            if t.type == template_type and t.channel == channel and t.account_id in (account_id, None)
        ]
        matches.sort(key=lambda t: t.account_id is None)
        return matches[0] if matches else None


class FakeReservations:
    TRACKED = ("checkin_at", "checkout_at", "guest_name", "guest_phone", "confirmation_code")

    def __init__(self):
        self.rows: dict = {}

    async def upsert(self, reservation) -> str:
        key = (reservation.property_id, reservation.external_id)
        existing = self.rows.get(key)
        if existing is None:
            self.rows[key] = reservation
            return "created"
        # Guest fields missing from the feed keep their stored value
        for name in ("guest_name", "guest_phone", "confirmation_code"):
            if getattr(reservation, name) is None:
                setattr(reservation, name, getattr(existing, name))
        changed = any(getattr(existing, name) != getattr(reservation, name) for name in self.TRACKED)
        if changed:
            self.rows[key] = reservation
            return "updated"
        return "unchanged"

    def _between(self, attr, day, tz, account_id):
        start, end = day_bounds(day, tz)
        return [
            r
            for r in self.rows.values()
            if start <= getattr(r, attr) < end and (account_id is None or r.account_id == account_id)
        ]

    async def list_checkins_on(self, day, tz, account_id=None):
        return self._between("checkin_at", day, tz, account_id)

    async def list_checkouts_on(self, day, tz, account_id=None):
        return self._between("checkout_at", day, tz, account_id)

    async def count_active(self, account_id=None) -> int:
        return len(self.rows)


class FakeJobRuns:
    def __init__(self):
        self.rows: list = []

    async def insert(self, run) -> None:
        self.rows.append(run)

    async def delete_older_than(self, days: int) -> int:
        return 0


class InMemoryStorage:
    """Storage double whose transaction() rolls back ledger and log writes on error."""

    def __init__(self):
        self.properties = FakePropertyRepository()
        self.reservations = FakeReservations()
        self.processed_events = FakeLedger()
        self.message_logs = FakeMessageLogs()
        self.templates = FakeTemplates()
        self.job_runs = FakeJobRuns()
        self.rollbacks = 0

    @asynccontextmanager
    async def transaction(self):
        ledger = set(self.processed_events.rows)
        logs = list(self.message_logs.rows)
        try:
            yield object()
        except BaseException:
            self.processed_events.rows = ledger
            self.message_logs.rows = logs
            self.rollbacks += 1
            raise


class FakeChannel(NotificationChannel):
    def __init__(self, name: Channel = Channel.WHATSAPP, connected: bool = True):
        super().__init__()
        self.name = name
        self.connected = connected
        self.fail_for: set[str] = set()
        self.sent: list[tuple[str, str]] = []
        self.attempts = 0
        self.status_calls = 0

    async def get_status(self) -> ChannelStatus:
        self.status_calls += 1
        return ChannelStatus(connected=self.connected, detail=None if self.connected else "session_closed")

    async def send(self, contact: str, text: str, subject: str | None = None) -> str | None:
        self.attempts += 1
        if contact in self.fail_for:
            raise ChannelError("recipient rejected", channel=self.name, status_code=400)
        self.sent.append((contact, text))
        return f"msg-{len(self.sent)}"


class FakeFetcher:
    def __init__(self):
        self.feeds: dict[str, list] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    async def fetch_calendar(self, url: str) -> FetchResult:
        self.calls.append(url)
        if url in self.failing:
            return FetchResult(events=[], meta=CacheMeta(url=url, error="timeout"))
        return FetchResult(events=list(self.feeds.get(url, [])), meta=CacheMeta(url=url))

    async def close(self) -> None:
        return None


@pytest.fixture
def tz():
    return SAO_PAULO


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def whatsapp():
    return FakeChannel(Channel.WHATSAPP)


@pytest.fixture
def channels(whatsapp):
    return ChannelRegistry([whatsapp])


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def make_property():
    def _make(
        property_id: str,
        name: str,
        recipients: list[Recipient] | None = None,
        calendars: list[str] | None = None,
        account_id: str = "acct-1",
        checkout_time: str | None = "11:00",
    ) -> Property:
        return Property(
            id=property_id,
            account_id=account_id,
            name=name,
            calendars=[CalendarSource(url=url, platform=SourcePlatform.AIRBNB) for url in calendars or []],
            recipients=recipients or [],
            checkout_time=checkout_time,
        )

    return _make


@pytest.fixture
def make_recipient():
    def _make(name: str, phone: str, account_id: str = "acct-1", channel: Channel = Channel.WHATSAPP) -> Recipient:
        return Recipient(id=f"rcp-{phone}", account_id=account_id, name=name, phone=phone, channel=channel)

    return _make


@pytest.fixture
def make_event(tz):
    def _make(
        uid: str,
        property_id: str,
        checkout: date,
        guest_name: str | None = "Guest",
        nights: int = 2,
        checkout_time: tuple[int, int] | None = None,
        blocked: bool = False,
    ) -> CalendarEvent:
        hour, minute = checkout_time or (0, 0)
        end = datetime(checkout.year, checkout.month, checkout.day, hour, minute, tzinfo=tz)
        return CalendarEvent(
            uid=uid,
            start=end - timedelta(days=nights),
            end=end,
            summary=guest_name or "Blocked",
            description="",
            platform=SourcePlatform.AIRBNB,
            is_blocked=blocked,
            property_id=property_id,
            guest_name=guest_name,
        )

    return _make


@pytest.fixture
def make_channel():
    def _make(name: Channel = Channel.WHATSAPP, connected: bool = True) -> FakeChannel:
        return FakeChannel(name, connected=connected)

    return _make
