# app/models/domain/calendar_domain.py
"""
Calendar Domain Models
Shapes produced by the calendar fetcher and the event classifier.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum


class SourcePlatform(StrEnum):
    AIRBNB = "airbnb"
    BOOKING = "booking"
    VRBO = "vrbo"
    CUSTOM = "custom"

    @classmethod
    def from_value(cls, value: str | None) -> "SourcePlatform":
        """Map free-form platform labels to a known platform, defaulting to custom."""
        if not value:
            return cls.CUSTOM
        normalized = value.strip().lower().replace(".com", "")
        for platform in cls:
            if platform.value == normalized:
                return platform
        return cls.CUSTOM


class EventType(StrEnum):
    CHECKOUT = "checkout"
    CHECKIN = "checkin"
    CHECKIN_REMINDER = "checkin_reminder"
    CHECKOUT_REMINDER = "checkout_reminder"
    REVIEW_REQUEST = "review_request"


@dataclass(slots=True)
class RawEvent:
    """A VEVENT as delivered by the feed; start/end may be date, naive or aware datetime."""

    uid: str
    summary: str
    description: str
    start: date | datetime
    end: date | datetime
    location: str = ""


@dataclass(slots=True)
class CacheMeta:
    url: str
    etag: str | None = None
    last_modified: str | None = None
    fetched_at: datetime | None = None
    from_cache: bool = False
    error: str | None = None


@dataclass(slots=True)
class FetchResult:
    events: list[RawEvent]
    meta: CacheMeta

    @property
    def ok(self) -> bool:
        return self.meta.error is None


@dataclass(slots=True)
class CalendarEvent:
    """Classified event with time-zone aware instants in the configured zone."""

    uid: str
    start: datetime
    end: datetime
    summary: str
    description: str
    platform: SourcePlatform
    is_blocked: bool
    property_id: str | None = None
    guest_name: str | None = None
    guest_phone: str | None = None
    confirmation_code: str | None = None

    @property
    def checkout_date(self) -> date:
        return self.end.date()

    @property
    def checkin_date(self) -> date:
        return self.start.date()


@dataclass(slots=True)
class CalendarSyncReport:
    """Per-property outcome of a fetch + classify pass."""

    property_id: str
    property_name: str
    events: list[CalendarEvent] = field(default_factory=list)
    calendars_fetched: int = 0
    calendars_failed: int = 0
    blocked: int = 0
    errors: list[str] = field(default_factory=list)
