# app/models/domain/notification_domain.py
"""
Notification Domain Models
Work items, rendered messages and dispatch outcomes shared by the message
builder, the dispatcher and the scheduler jobs.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import StrEnum

from app.models.domain.calendar_domain import EventType
from app.models.domain.property_domain import Channel


@dataclass(slots=True, frozen=True)
class ProcessedEventKey:
    """Identity of a ledger row. At most one row exists per key."""

    property_id: str
    event_uid: str
    event_date: date
    event_type: EventType = EventType.CHECKOUT


@dataclass(slots=True)
class CheckoutItem:
    """One checkout that a recipient has to clean."""

    property_id: str
    property_name: str
    account_id: str
    event_uid: str
    checkout_date: date
    checkout_time: str
    guest_name: str | None = None

    @property
    def ledger_key(self) -> ProcessedEventKey:
        return ProcessedEventKey(self.property_id, self.event_uid, self.checkout_date)


@dataclass(slots=True)
class RenderedMessage:
    """Fully composed message for one recipient; the unit the dispatcher sends."""

    recipient_phone: str
    recipient_name: str
    contact: str
    channel: Channel
    body: str
    message_type: str
    account_id: str
    event_keys: list[ProcessedEventKey] = field(default_factory=list)
    items: list[CheckoutItem] = field(default_factory=list)
    subject: str | None = None

    @property
    def property_id(self) -> str | None:
        return self.event_keys[0].property_id if self.event_keys else None


@dataclass(slots=True)
class MessageTemplate:
    type: str
    channel: Channel
    content: str
    account_id: str | None = None
    subject: str | None = None
    id: str | None = None


class MessageStatus(StrEnum):
    SENT = "sent"
    FAILED = "failed"


@dataclass(slots=True)
class MessageLog:
    """Append-only audit row written after every send attempt."""

    recipient: str
    channel: Channel
    message_type: str
    body: str
    status: MessageStatus
    property_id: str | None = None
    account_id: str | None = None
    provider_message_id: str | None = None
    error: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class ChannelStatus:
    connected: bool
    detail: str | None = None


@dataclass(slots=True)
class DispatchResult:
    success: bool
    provider_message_id: str | None = None
    error: str | None = None


class DeliveryStatus(StrEnum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"
    CHANNEL_DISCONNECTED = "channel_disconnected"


@dataclass(slots=True)
class DeliveryOutcome:
    recipient_phone: str
    channel: Channel
    status: DeliveryStatus
    events_covered: int = 0
    provider_message_id: str | None = None
    error: str | None = None


@dataclass(slots=True)
class BatchOutcome:
    deliveries: list[DeliveryOutcome] = field(default_factory=list)
    disconnected_channels: list[str] = field(default_factory=list)

    def count(self, status: DeliveryStatus) -> int:
        return sum(1 for d in self.deliveries if d.status == status)

    @property
    def sent(self) -> int:
        return self.count(DeliveryStatus.SENT)

    @property
    def failed(self) -> int:
        return self.count(DeliveryStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(DeliveryStatus.SKIPPED)

    @property
    def events_covered(self) -> int:
        return sum(d.events_covered for d in self.deliveries if d.status == DeliveryStatus.SENT)


class RunStatus(StrEnum):
    CLEAN = "clean"
    PARTIAL = "partial"
    NOT_RUN = "not_run"
    NO_EVENTS = "no_events"


@dataclass(slots=True)
class RunSummary:
    """Result of a notification run, returned by the manual trigger."""

    target_date: date
    status: RunStatus
    events_processed: int = 0
    messages_sent: int = 0
    messages_failed: int = 0
    messages_skipped: int = 0
    reason: str | None = None

    @classmethod
    def from_outcome(cls, target_date: date, outcome: BatchOutcome) -> "RunSummary":
        if outcome.disconnected_channels and not (outcome.sent or outcome.failed):
            status = RunStatus.NOT_RUN
            reason = "channel_disconnected: " + ",".join(outcome.disconnected_channels)
        elif outcome.failed or outcome.disconnected_channels:
            status = RunStatus.PARTIAL
            reason = (
                "channel_disconnected: " + ",".join(outcome.disconnected_channels)
                if outcome.disconnected_channels
                else None
            )
        else:
            status = RunStatus.CLEAN
            reason = None

        return cls(
            target_date=target_date,
            status=status,
            events_processed=outcome.events_covered,
            messages_sent=outcome.sent,
            messages_failed=outcome.failed,
            messages_skipped=outcome.skipped,
            reason=reason,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["target_date"] = self.target_date.isoformat()
        data["status"] = self.status.value
        return data
