"""
Event extraction and classification.

Turns RawEvents into CalendarEvents: timestamps normalized into the configured
zone, guest name / phone / confirmation code pulled from platform-specific
summary and description formats, and placeholder "blocked" entries flagged.
"""

import re
from collections.abc import Iterable
from datetime import date, datetime, time, tzinfo

from app.models.domain.calendar_domain import CalendarEvent, RawEvent, SourcePlatform

AIRBNB_SUMMARY = re.compile(r"^(.+?)\s*\(([A-Z0-9]+)\)$")
AIRBNB_RESERVATION_URL = re.compile(r"/reservations/details/([A-Z0-9]+)", re.IGNORECASE)
BOOKING_SUMMARY = re.compile(r"^CLOSED\s*-\s*(.+)$", re.IGNORECASE)
BOOKING_CONFIRMATION = re.compile(r"Booking\.com:\s*(\d+)", re.IGNORECASE)
VRBO_SUMMARY = re.compile(r"^Reserved\s*-\s*(.+)$", re.IGNORECASE)
PHONE_IN_DESCRIPTION = re.compile(r"Phone(?: Number)?(?: \(Last 4 Digits\))?:\s*(\+?[\d\s()-]{4,})", re.IGNORECASE)

# Summaries that never name a guest
PLACEHOLDER_EXACT = {
    "reserved",
    "blocked",
    "closed",
    "not available",
    "unavailable",
    "bloqueado",
    "indisponível",
    "indisponivel",
    "airbnb (not available)",
}
PLACEHOLDER_SUBSTRINGS = ("blocked", "not available", "unavailable")


def to_local(value: date | datetime, tz: tzinfo) -> datetime:
    """
    Normalize a feed timestamp into an aware datetime in `tz`.

    All-day dates become local midnight, floating (naive) datetimes are read as
    local wall time, and aware datetimes are converted.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=tz)
        return value.astimezone(tz)
    return datetime.combine(value, time.min, tzinfo=tz)


def is_placeholder_summary(summary: str) -> bool:
    lowered = summary.strip().lower()
    if not lowered or lowered in PLACEHOLDER_EXACT:
        return True
    return any(token in lowered for token in PLACEHOLDER_SUBSTRINGS)


def _clean_phone(raw: str) -> str:
    return re.sub(r"[\s()-]", "", raw)


def _parse_airbnb(summary: str, description: str) -> tuple[str | None, str | None, str | None]:
    guest_name = None
    confirmation_code = None

    match = AIRBNB_SUMMARY.match(summary)
    if match:
        guest_name = match.group(1).strip()
        confirmation_code = match.group(2)
    elif summary not in ("Reserved", "Blocked"):
        guest_name = summary or None

    if not confirmation_code:
        url_match = AIRBNB_RESERVATION_URL.search(description)
        if url_match:
            confirmation_code = url_match.group(1).upper()

    phone_match = PHONE_IN_DESCRIPTION.search(description)
    guest_phone = _clean_phone(phone_match.group(1)) if phone_match else None

    return guest_name, guest_phone, confirmation_code


def _parse_booking(summary: str, description: str) -> tuple[str | None, str | None, str | None]:
    guest_name = None

    match = BOOKING_SUMMARY.match(summary)
    if match:
        guest_name = match.group(1).strip()
    elif "CLOSED" not in summary.upper() and "not available" not in summary.lower():
        guest_name = summary or None

    conf_match = BOOKING_CONFIRMATION.search(description)
    confirmation_code = conf_match.group(1) if conf_match else None

    return guest_name, None, confirmation_code


def _parse_vrbo(summary: str, description: str) -> tuple[str | None, str | None, str | None]:
    match = VRBO_SUMMARY.match(summary)
    if match:
        return match.group(1).strip(), None, None
    return summary or None, None, None


def _parse_custom(summary: str, description: str) -> tuple[str | None, str | None, str | None]:
    phone_match = PHONE_IN_DESCRIPTION.search(description)
    guest_phone = _clean_phone(phone_match.group(1)) if phone_match else None
    return summary or None, guest_phone, None


_PARSERS = {
    SourcePlatform.AIRBNB: _parse_airbnb,
    SourcePlatform.BOOKING: _parse_booking,
    SourcePlatform.VRBO: _parse_vrbo,
    SourcePlatform.CUSTOM: _parse_custom,
}


def classify(
    raw_event: RawEvent,
    platform: SourcePlatform,
    timezone: tzinfo,
    property_id: str | None = None,
) -> CalendarEvent:
    """Classify a raw feed entry for one platform."""
    summary = (raw_event.summary or "").strip()
    description = raw_event.description or ""

    guest_name, guest_phone, confirmation_code = _PARSERS[platform](summary, description)

    if guest_name and is_placeholder_summary(guest_name):
        guest_name = None

    is_blocked = guest_name is None or any(token in summary.lower() for token in PLACEHOLDER_SUBSTRINGS)

    start = to_local(raw_event.start, timezone)
    end = to_local(raw_event.end, timezone)

    uid = raw_event.uid or f"{platform.value}-{start.isoformat()}-{end.isoformat()}"

    return CalendarEvent(
        uid=uid,
        start=start,
        end=end,
        summary=summary,
        description=description,
        platform=platform,
        is_blocked=is_blocked,
        property_id=property_id,
        guest_name=guest_name,
        guest_phone=guest_phone,
        confirmation_code=confirmation_code,
    )


def is_checkout_on(event: CalendarEvent, target_date: date) -> bool:
    """Checkout-day membership: the local date of `end` equals the target date."""
    return event.end.date() == target_date


def is_checkin_on(event: CalendarEvent, target_date: date) -> bool:
    return event.start.date() == target_date


def filter_checkouts(events: Iterable[CalendarEvent], target_date: date) -> list[CalendarEvent]:
    """Non-blocked events checking out on `target_date`."""
    return [e for e in events if not e.is_blocked and is_checkout_on(e, target_date)]


def filter_checkins(events: Iterable[CalendarEvent], target_date: date) -> list[CalendarEvent]:
    return [e for e in events if not e.is_blocked and is_checkin_on(e, target_date)]
