"""
Daily cleaning notification pipeline.

load properties -> fetch + classify -> checkouts on the target date ->
drop events already in the ledger -> group and render every message ->
dispatch the batch.
"""

from collections.abc import Callable
from datetime import date, datetime, tzinfo

from app.infrastructure.observability.logging import get_logger
from app.models.domain.notification_domain import ProcessedEventKey, RunStatus, RunSummary
from app.services.calendar.classifier import filter_checkouts
from app.services.calendar.sync_service import CalendarSyncService
from app.services.notifications.dispatcher import Dispatcher
from app.services.notifications.message_builder import MessageBuilder

logger = get_logger(__name__)


class CleaningNotificationPipeline:
    def __init__(
        self,
        storage,
        sync_service: CalendarSyncService,
        builder: MessageBuilder,
        dispatcher: Dispatcher,
        timezone: tzinfo,
        clock: Callable[[], datetime] | None = None,
    ):
        self.storage = storage
        self.sync_service = sync_service
        self.builder = builder
        self.dispatcher = dispatcher
        self.timezone = timezone
        self._clock = clock

    def today(self) -> date:
        now = self._clock() if self._clock else datetime.now(self.timezone)
        return now.astimezone(self.timezone).date()

    async def run(self, target_date: date | None = None, account_id: str | None = None) -> RunSummary:
        """
        Notify cleaning staff about checkouts on ``target_date`` (default today).

        Args:
            target_date: Day to process, in the configured time zone
            account_id: Restrict the run to one account's properties

        Returns:
            RunSummary distinguishing clean, partial, not_run and no_events
        """
        target = target_date or self.today()

        properties = await self.storage.properties.list_active(account_id)
        if not properties:
            logger.info("No active properties", target_date=target.isoformat(), account_id=account_id)
            return RunSummary(target_date=target, status=RunStatus.NO_EVENTS, reason="no_active_properties")

        reports = await self.sync_service.collect(properties)
        events = [event for report in reports for event in report.events]
        checkouts = filter_checkouts(events, target)

        pending = []
        for event in checkouts:
            key = ProcessedEventKey(event.property_id, event.uid, target)
            if await self.storage.processed_events.is_processed(key):
                continue
            pending.append(event)

        logger.info(
            "Checkouts collected",
            target_date=target.isoformat(),
            properties=len(properties),
            calendars_failed=sum(r.calendars_failed for r in reports),
            checkouts=len(checkouts),
            pending=len(pending),
        )

        if not pending:
            return RunSummary(target_date=target, status=RunStatus.NO_EVENTS, reason="no_pending_checkouts")

        messages = await self.builder.group_and_render(pending, {p.id: p for p in properties})
        if not messages:
            return RunSummary(target_date=target, status=RunStatus.NO_EVENTS, reason="no_recipients")

        outcome = await self.dispatcher.dispatch_batch(messages.values())
        summary = RunSummary.from_outcome(target, outcome)

        logger.info("Cleaning notifications finished", **summary.to_dict())
        return summary
