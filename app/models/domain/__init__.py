"""
Domain records shared by the calendar, notification and scheduler layers.
"""

from .calendar_domain import (
    CacheMeta,
    CalendarEvent,
    CalendarSyncReport,
    EventType,
    FetchResult,
    RawEvent,
    SourcePlatform,
)
from .job_domain import JobInvocation, JobRun, JobStatus, JobTrigger
from .notification_domain import (
    BatchOutcome,
    ChannelStatus,
    CheckoutItem,
    DeliveryOutcome,
    DeliveryStatus,
    DispatchResult,
    MessageLog,
    MessageStatus,
    MessageTemplate,
    ProcessedEventKey,
    RenderedMessage,
    RunStatus,
    RunSummary,
)
from .property_domain import CalendarSource, Channel, Property, Recipient, Reservation

__all__ = [
    "BatchOutcome",
    "CacheMeta",
    "CalendarEvent",
    "CalendarSource",
    "CalendarSyncReport",
    "Channel",
    "ChannelStatus",
    "CheckoutItem",
    "DeliveryOutcome",
    "DeliveryStatus",
    "DispatchResult",
    "EventType",
    "FetchResult",
    "JobInvocation",
    "JobRun",
    "JobStatus",
    "JobTrigger",
    "MessageLog",
    "MessageStatus",
    "MessageTemplate",
    "ProcessedEventKey",
    "Property",
    "RawEvent",
    "Recipient",
    "RenderedMessage",
    "Reservation",
    "RunStatus",
    "RunSummary",
    "SourcePlatform",
]
