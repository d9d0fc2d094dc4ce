"""
iCal feed fetcher with conditional-request caching.

Feeds are polled every 30 minutes; ETag / Last-Modified headers from the
previous successful fetch are replayed so unchanged calendars answer 304 and
the cached parse is reused. Failures never raise: the caller always gets a
FetchResult, empty when the calendar could not be read.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
from icalendar import Calendar

from app.config import settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import CacheMeta, FetchResult, RawEvent

logger = get_logger(__name__)

USER_AGENT = "CleaningNotifier/1.0 (+calendar-sync)"


class CalendarFetchError(Exception):
    """Raised internally when a feed cannot be downloaded or parsed."""

    def __init__(self, message: str, url: str, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


@dataclass(slots=True)
class _CacheEntry:
    etag: str | None
    last_modified: str | None
    events: list[RawEvent]
    fetched_at: datetime


def parse_ics(raw: str | bytes) -> list[RawEvent]:
    """
    Parse an ICS document into RawEvents.

    Only VEVENT components are kept. Events without DTSTART are dropped;
    a missing DTEND falls back to DTSTART.

    Raises:
        ValueError: If the document is not valid iCalendar data
    """
    calendar = Calendar.from_ical(raw)

    events: list[RawEvent] = []
    for component in calendar.walk("VEVENT"):
        dtstart = component.get("DTSTART")
        if dtstart is None:
            continue
        dtend = component.get("DTEND")

        start = dtstart.dt
        end = dtend.dt if dtend is not None else start

        events.append(
            RawEvent(
                uid=str(component.get("UID", "")).strip(),
                summary=str(component.get("SUMMARY", "")).strip(),
                description=str(component.get("DESCRIPTION", "")),
                location=str(component.get("LOCATION", "")),
                start=start,
                end=end,
            )
        )

    return events


class CalendarFetcher:
    """Downloads and parses iCal feeds, caching the last good parse per URL."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float | None = None):
        self._timeout = timeout or settings.CALENDAR_FETCH_TIMEOUT_SECONDS
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._timeout),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        self._cache: dict[str, _CacheEntry] = {}

    async def close(self) -> None:
        await self._client.aclose()

    def clear_cache(self, url: str | None = None) -> None:
        if url:
            self._cache.pop(url, None)
            return
        self._cache.clear()

    def cached_urls(self) -> list[str]:
        return list(self._cache.keys())

    async def fetch_calendar(self, url: str) -> FetchResult:
        """
        Fetch and parse one calendar.

        Returns the cached parse on HTTP 304. On network failure, timeout,
        HTTP error or malformed ICS, logs the error and returns no events.
        """
        if not url:
            return FetchResult(events=[], meta=CacheMeta(url="", error="empty url"))

        try:
            return await self._fetch(url)
        except CalendarFetchError as e:
            logger.warning(
                "Calendar fetch failed",
                url=url,
                status_code=e.status_code,
                error=str(e),
            )
            return FetchResult(events=[], meta=CacheMeta(url=url, error=str(e)))

    async def _fetch(self, url: str) -> FetchResult:
        cached = self._cache.get(url)
        headers = {}
        if cached and cached.etag:
            headers["If-None-Match"] = cached.etag
        if cached and cached.last_modified:
            headers["If-Modified-Since"] = cached.last_modified

        try:
            response = await self._client.get(url, headers=headers, timeout=self._timeout)
        except httpx.TimeoutException as e:
            raise CalendarFetchError(f"Timed out after {self._timeout}s", url) from e
        except httpx.HTTPError as e:
            raise CalendarFetchError(f"{type(e).__name__}: {e}", url) from e

        if response.status_code == 304:
            if cached:
                logger.debug("Calendar not modified, using cached parse", url=url)
                return FetchResult(
                    events=list(cached.events),
                    meta=CacheMeta(
                        url=url,
                        etag=cached.etag,
                        last_modified=cached.last_modified,
                        fetched_at=cached.fetched_at,
                        from_cache=True,
                    ),
                )
            raise CalendarFetchError("Got 304 without a cached calendar", url, status_code=304)

        if response.status_code >= 400:
            raise CalendarFetchError(
                f"Failed to fetch calendar: HTTP {response.status_code}",
                url,
                status_code=response.status_code,
            )

        try:
            events = parse_ics(response.content)
        except (ValueError, IndexError, KeyError, TypeError) as e:
            raise CalendarFetchError(f"Malformed ICS: {e}", url, status_code=response.status_code) from e

        entry = _CacheEntry(
            etag=response.headers.get("etag") or (cached.etag if cached else None),
            last_modified=response.headers.get("last-modified")
            or (cached.last_modified if cached else None),
            events=events,
            fetched_at=datetime.now(UTC),
        )
        self._cache[url] = entry

        logger.info("Calendar fetched", url=url, event_count=len(events))

        return FetchResult(
            events=list(events),
            meta=CacheMeta(
                url=url,
                etag=entry.etag,
                last_modified=entry.last_modified,
                fetched_at=entry.fetched_at,
                from_cache=False,
            ),
        )
