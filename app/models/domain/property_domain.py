# app/models/domain/property_domain.py
"""
Property, recipient and reservation records read by the pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from app.models.domain.calendar_domain import SourcePlatform


class Channel(StrEnum):
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    SMS = "sms"


@dataclass(slots=True)
class CalendarSource:
    url: str
    platform: SourcePlatform = SourcePlatform.CUSTOM


@dataclass(slots=True)
class Recipient:
    id: str
    account_id: str
    name: str
    phone: str
    email: str | None = None
    channel: Channel = Channel.WHATSAPP

    def contact_for(self, channel: Channel) -> str | None:
        """Address to use on a given channel."""
        if channel == Channel.EMAIL:
            return self.email
        return self.phone


@dataclass(slots=True)
class Property:
    id: str
    account_id: str
    name: str
    calendars: list[CalendarSource] = field(default_factory=list)
    recipients: list[Recipient] = field(default_factory=list)
    checkout_time: str | None = None
    checkin_time: str | None = None
    active: bool = True
    wifi_name: str | None = None
    wifi_password: str | None = None
    access_instructions: str | None = None


@dataclass(slots=True)
class Reservation:
    """Reservation materialized from a calendar event by the calendar-sync job."""

    property_id: str
    account_id: str
    external_id: str
    platform: SourcePlatform
    checkin_at: datetime
    checkout_at: datetime
    id: str | None = None
    guest_name: str | None = None
    guest_phone: str | None = None
    guest_email: str | None = None
    confirmation_code: str | None = None
    status: str = "confirmed"
    adults: int | None = None
    children: int | None = None
    total_amount: Decimal | None = None
