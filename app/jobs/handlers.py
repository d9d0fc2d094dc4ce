"""
Job bodies for the scheduler.

Services are built once by ``build_job_context`` and shared by every handler;
handlers receive a JobInvocation and return a JSON-friendly result dict.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any

import httpx

from app.config import Settings
from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.jobs.cleaning_pipeline import CleaningNotificationPipeline
from app.jobs.queue import JobQueue
from app.jobs.scheduler import JobExecutionError, JobHandler, Scheduler, build_job_definitions
from app.models.domain.calendar_domain import EventType
from app.models.domain.job_domain import JobInvocation
from app.models.domain.notification_domain import (
    ProcessedEventKey,
    RenderedMessage,
    RunStatus,
    RunSummary,
)
from app.models.domain.property_domain import Channel, Property, Reservation
from app.repositories.storage import PostgresStorage
from app.services.calendar.fetcher import CalendarFetcher
from app.services.calendar.sync_service import CalendarSyncService, reservation_from_event
from app.services.notifications.channels import ChannelRegistry, build_channel_registry, format_phone_number
from app.services.notifications.dispatcher import Dispatcher
from app.services.notifications.message_builder import MessageBuilder
from app.services.notifications.templates import (
    TemplateContext,
    default_checkin_reminder,
    default_checkout_reminder,
    default_review_request,
    render_template,
)

logger = get_logger(__name__)

GUEST_DEFAULTS = {
    EventType.CHECKIN_REMINDER: default_checkin_reminder,
    EventType.CHECKOUT_REMINDER: default_checkout_reminder,
    EventType.REVIEW_REQUEST: default_review_request,
}


@dataclass(slots=True)
class JobContext:
    settings: Settings
    storage: Any
    fetcher: CalendarFetcher
    sync_service: CalendarSyncService
    builder: MessageBuilder
    channels: ChannelRegistry
    dispatcher: Dispatcher
    pipeline: CleaningNotificationPipeline
    timezone: tzinfo
    clock: Callable[[], datetime] | None = None

    def today(self) -> date:
        now = self.clock() if self.clock else datetime.now(self.timezone)
        return now.astimezone(self.timezone).date()

    async def close(self) -> None:
        await self.fetcher.close()


def build_job_context(
    settings: Settings,
    storage=None,
    http_client: httpx.AsyncClient | None = None,
    channels: ChannelRegistry | None = None,
    clock: Callable[[], datetime] | None = None,
) -> JobContext:
    """Construct every service the jobs need, once per process."""
    storage = storage or PostgresStorage()
    timezone = settings.tz()

    fetcher = CalendarFetcher(client=http_client, timeout=settings.CALENDAR_FETCH_TIMEOUT_SECONDS)
    sync_service = CalendarSyncService(fetcher, timezone, settings.CALENDAR_MAX_CONCURRENT_FETCHES)
    builder = MessageBuilder(storage.templates, settings.DEFAULT_CHECKOUT_TIME)
    channels = channels or build_channel_registry(settings)
    dispatcher = Dispatcher(
        channels, storage, timeout=settings.DISPATCH_TIMEOUT_SECONDS, rerender=builder.rerender
    )
    pipeline = CleaningNotificationPipeline(storage, sync_service, builder, dispatcher, timezone, clock=clock)

    return JobContext(
        settings=settings,
        storage=storage,
        fetcher=fetcher,
        sync_service=sync_service,
        builder=builder,
        channels=channels,
        dispatcher=dispatcher,
        pipeline=pipeline,
        timezone=timezone,
        clock=clock,
    )


def _local_time(value: datetime, tz: tzinfo, fallback: str) -> str:
    local = value.astimezone(tz)
    if local.time() == time(0, 0):
        return fallback
    return local.strftime("%H:%M")


class JobHandlers:
    def __init__(self, ctx: JobContext):
        self.ctx = ctx

    def as_dict(self) -> dict[str, JobHandler]:
        return {
            "calendar-sync": self.calendar_sync,
            "checkin-reminders": self.checkin_reminders,
            "checkout-reminders": self.checkout_reminders,
            "cleaning-notifications": self.cleaning_notifications,
            "review-requests": self.review_requests,
            "cleanup": self.cleanup,
            "daily-summary": self.daily_summary,
        }

    async def calendar_sync(self, invocation: JobInvocation) -> dict[str, Any]:
        """Fetch every active calendar and upsert reservations."""
        storage = self.ctx.storage
        properties = await storage.properties.list_active(invocation.account_id)
        reports = await self.ctx.sync_service.collect(properties)
        properties_by_id = {p.id: p for p in properties}

        counts = {"created": 0, "updated": 0, "unchanged": 0}
        write_errors = 0
        for report in reports:
            prop = properties_by_id[report.property_id]
            for event in report.events:
                try:
                    outcome = await storage.reservations.upsert(reservation_from_event(prop, event))
                except DatabaseError as e:
                    write_errors += 1
                    logger.error(
                        "Reservation upsert failed", property_id=prop.id, uid=event.uid, error=str(e)
                    )
                    continue
                counts[outcome] += 1

            if report.calendars_fetched:
                await storage.properties.touch_last_sync(prop.id)

        calendars_failed = sum(r.calendars_failed for r in reports)
        result = {
            "properties": len(properties),
            "calendars_fetched": sum(r.calendars_fetched for r in reports),
            "calendars_failed": calendars_failed,
            "events": sum(len(r.events) for r in reports),
            "blocked": sum(r.blocked for r in reports),
            "reservations_created": counts["created"],
            "reservations_updated": counts["updated"],
            "write_errors": write_errors,
        }
        if calendars_failed or write_errors:
            result["status"] = "partial"
            result["reason"] = "calendar_or_write_failures"
        return result

    async def cleaning_notifications(self, invocation: JobInvocation) -> dict[str, Any]:
        """Notify cleaning staff about today's checkouts."""
        summary = await self.ctx.pipeline.run(invocation.target_date, invocation.account_id)
        return summary.to_dict()

    async def checkin_reminders(self, invocation: JobInvocation) -> dict[str, Any]:
        """Remind guests checking in tomorrow."""
        target = invocation.target_date or self.ctx.today() + timedelta(days=1)
        reservations = await self.ctx.storage.reservations.list_checkins_on(
            target, self.ctx.timezone, invocation.account_id
        )
        return await self._send_guest_messages(EventType.CHECKIN_REMINDER, target, reservations, invocation)

    async def checkout_reminders(self, invocation: JobInvocation) -> dict[str, Any]:
        """Remind guests checking out tomorrow."""
        target = invocation.target_date or self.ctx.today() + timedelta(days=1)
        reservations = await self.ctx.storage.reservations.list_checkouts_on(
            target, self.ctx.timezone, invocation.account_id
        )
        return await self._send_guest_messages(EventType.CHECKOUT_REMINDER, target, reservations, invocation)

    async def review_requests(self, invocation: JobInvocation) -> dict[str, Any]:
        """Ask guests who checked out yesterday for a review."""
        target = invocation.target_date or self.ctx.today() - timedelta(days=1)
        reservations = await self.ctx.storage.reservations.list_checkouts_on(
            target, self.ctx.timezone, invocation.account_id
        )
        return await self._send_guest_messages(EventType.REVIEW_REQUEST, target, reservations, invocation)

    async def _send_guest_messages(
        self,
        kind: EventType,
        target: date,
        reservations: list[Reservation],
        invocation: JobInvocation,
    ) -> dict[str, Any]:
        properties = await self.ctx.storage.properties.list_active(invocation.account_id)
        properties_by_id = {p.id: p for p in properties}

        messages: list[RenderedMessage] = []
        no_contact = 0
        for reservation in reservations:
            prop = properties_by_id.get(reservation.property_id)
            if prop is None:
                continue
            message = await self._render_guest_message(kind, target, reservation, prop)
            if message is None:
                no_contact += 1
                continue
            messages.append(message)

        if not messages:
            summary = RunSummary(target_date=target, status=RunStatus.NO_EVENTS, reason="no_reservations")
        else:
            outcome = await self.ctx.dispatcher.dispatch_batch(messages)
            summary = RunSummary.from_outcome(target, outcome)

        result = summary.to_dict()
        result.update({"message_type": kind.value, "reservations": len(reservations), "no_contact": no_contact})
        return result

    async def _render_guest_message(
        self, kind: EventType, target: date, reservation: Reservation, prop: Property
    ) -> RenderedMessage | None:
        phone = format_phone_number(reservation.guest_phone or "")
        if phone:
            channel, contact = Channel.WHATSAPP, phone
        elif reservation.guest_email:
            channel, contact = Channel.EMAIL, reservation.guest_email
        else:
            return None

        settings = self.ctx.settings
        tz = self.ctx.timezone
        context = TemplateContext(
            guest_name=reservation.guest_name,
            property_name=prop.name,
            checkin_date=reservation.checkin_at.astimezone(tz).date(),
            checkout_date=reservation.checkout_at.astimezone(tz).date(),
            checkin_time=_local_time(
                reservation.checkin_at, tz, prop.checkin_time or settings.DEFAULT_CHECKIN_TIME
            ),
            checkout_time=_local_time(
                reservation.checkout_at, tz, prop.checkout_time or settings.DEFAULT_CHECKOUT_TIME
            ),
            wifi_name=prop.wifi_name,
            wifi_password=prop.wifi_password,
            access_instructions=prop.access_instructions,
            total_amount=reservation.total_amount,
            reservation_id=reservation.confirmation_code or reservation.external_id,
            adults=reservation.adults,
            children=reservation.children,
        )

        template = await self.ctx.storage.templates.get(kind.value, channel, prop.account_id)
        if template is not None:
            body = render_template(template.content, context)
            subject = render_template(template.subject, context) if template.subject else None
        else:
            body = GUEST_DEFAULTS[kind](context)
            subject = None

        return RenderedMessage(
            recipient_phone=contact,
            recipient_name=reservation.guest_name or "",
            contact=contact,
            channel=channel,
            body=body,
            subject=subject,
            message_type=kind.value,
            account_id=prop.account_id,
            event_keys=[ProcessedEventKey(prop.id, reservation.external_id, target, kind)],
        )

    async def cleanup(self, invocation: JobInvocation) -> dict[str, Any]:
        """Prune the processed-event ledger, message logs and job runs."""
        settings = self.ctx.settings
        storage = self.ctx.storage
        try:
            result = {
                "processed_events_deleted": await storage.processed_events.delete_older_than(
                    settings.PROCESSED_EVENT_RETENTION_DAYS
                ),
                "message_logs_deleted": await storage.message_logs.delete_older_than(
                    settings.MESSAGE_LOG_RETENTION_DAYS
                ),
                "job_runs_deleted": await storage.job_runs.delete_older_than(settings.JOB_RUN_RETENTION_DAYS),
            }
        except DatabaseError as e:
            raise JobExecutionError(f"Cleanup failed during {e.operation}: {e}") from e

        logger.info("Old data pruned", **result)
        return result

    async def daily_summary(self, invocation: JobInvocation) -> dict[str, Any]:
        """Log today's checkins, checkouts and channel health."""
        target = invocation.target_date or self.ctx.today()
        reservations = self.ctx.storage.reservations
        tz = self.ctx.timezone

        checkins = await reservations.list_checkins_on(target, tz, invocation.account_id)
        checkouts = await reservations.list_checkouts_on(target, tz, invocation.account_id)
        result = {
            "date": target.isoformat(),
            "checkins": len(checkins),
            "checkouts": len(checkouts),
            "active_reservations": await reservations.count_active(invocation.account_id),
            "channels": await self.ctx.channels.status_all(),
        }
        logger.info("Daily summary", **result)
        return result


def build_scheduler(ctx: JobContext, queue: JobQueue | None = None) -> Scheduler:
    handlers = JobHandlers(ctx).as_dict()
    jobs = build_job_definitions(handlers, ctx.settings.JOB_SCHEDULE_OVERRIDES)
    return Scheduler(
        jobs,
        timezone=ctx.timezone,
        queue=queue,
        run_store=getattr(ctx.storage, "job_runs", None),
        clock=ctx.clock,
    )
