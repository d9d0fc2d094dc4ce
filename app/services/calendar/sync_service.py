"""
Calendar sync service.

Fetches and classifies every calendar of a set of properties. Properties are
processed in bounded parallel; a failing calendar or property only affects
its own report.
"""

import asyncio
from collections.abc import Sequence
from datetime import tzinfo

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import CalendarEvent, CalendarSyncReport
from app.models.domain.property_domain import Property, Reservation
from app.services.calendar.classifier import classify
from app.services.calendar.fetcher import CalendarFetcher

logger = get_logger(__name__)


class CalendarSyncService:
    """Fetch + classify pass over many properties."""

    def __init__(
        self,
        fetcher: CalendarFetcher,
        timezone: tzinfo,
        max_concurrent: int | None = None,
    ):
        self.fetcher = fetcher
        self.timezone = timezone
        self.max_concurrent = max_concurrent or settings.CALENDAR_MAX_CONCURRENT_FETCHES

    async def collect(self, properties: Sequence[Property]) -> list[CalendarSyncReport]:
        """
        Classified events for every property, one report per property.

        Reports keep blocked events out of `events` and count them instead.
        """
        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def _guarded(prop: Property) -> CalendarSyncReport:
            async with semaphore:
                return await self._collect_property(prop)

        results = await asyncio.gather(*(_guarded(p) for p in properties), return_exceptions=True)

        reports: list[CalendarSyncReport] = []
        for prop, result in zip(properties, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Calendar sync failed for property",
                    property_id=prop.id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                reports.append(
                    CalendarSyncReport(
                        property_id=prop.id,
                        property_name=prop.name,
                        errors=[f"{type(result).__name__}: {result}"],
                    )
                )
            else:
                reports.append(result)

        return reports

    async def _collect_property(self, prop: Property) -> CalendarSyncReport:
        report = CalendarSyncReport(property_id=prop.id, property_name=prop.name)
        seen: set[tuple[str, str]] = set()

        for source in prop.calendars:
            result = await self.fetcher.fetch_calendar(source.url)
            if not result.ok:
                report.calendars_failed += 1
                report.errors.append(f"{source.platform.value}: {result.meta.error}")
                continue

            report.calendars_fetched += 1
            for raw in result.events:
                event = classify(raw, source.platform, self.timezone, property_id=prop.id)
                if event.is_blocked:
                    report.blocked += 1
                    continue
                key = (event.platform.value, event.uid)
                if key in seen:
                    continue
                seen.add(key)
                report.events.append(event)

        logger.debug(
            "Property calendars collected",
            property_id=prop.id,
            events=len(report.events),
            blocked=report.blocked,
            calendars_failed=report.calendars_failed,
        )
        return report


def reservation_from_event(prop: Property, event: CalendarEvent) -> Reservation:
    """Materialize a reservation row from a classified, non-blocked event."""
    return Reservation(
        property_id=prop.id,
        account_id=prop.account_id,
        external_id=event.uid,
        platform=event.platform,
        checkin_at=event.start,
        checkout_at=event.end,
        guest_name=event.guest_name,
        guest_phone=event.guest_phone,
        confirmation_code=event.confirmation_code,
    )
