"""
End-to-end runs of the cleaning notification pipeline over in-memory storage.
"""

from datetime import date, datetime

import pytest

from app.jobs.cleaning_pipeline import CleaningNotificationPipeline
from app.models.domain.calendar_domain import RawEvent
from app.models.domain.notification_domain import MessageStatus, RunStatus
from app.services.calendar.sync_service import CalendarSyncService
from app.services.notifications.dispatcher import Dispatcher
from app.services.notifications.message_builder import MessageBuilder

TODAY = date(2024, 11, 23)


def booking(uid: str, guest: str, checkin: date, checkout: date) -> RawEvent:
    return RawEvent(uid=uid, summary=f"{guest} (HM{uid.upper()})", description="", start=checkin, end=checkout)


@pytest.fixture
def pipeline(storage, fetcher, channels, tz):
    builder = MessageBuilder(storage.templates, default_checkout_time="11:00")
    return CleaningNotificationPipeline(
        storage,
        CalendarSyncService(fetcher, tz, max_concurrent=2),
        builder,
        Dispatcher(channels, storage, rerender=builder.rerender),
        tz,
        clock=lambda: datetime(2024, 11, 23, 10, 0, tzinfo=tz),
    )


@pytest.fixture
def rita(make_recipient):
    return make_recipient("Rita", "11988887777")


@pytest.mark.asyncio
async def test_second_run_is_a_no_op(pipeline, storage, fetcher, whatsapp, make_property, rita):
    fetcher.feeds["https://ical/loft"] = [booking("a1", "Maria", date(2024, 11, 20), TODAY)]
    storage.properties.properties.append(make_property("p1", "Loft A", [rita], ["https://ical/loft"]))

    first = await pipeline.run()
    second = await pipeline.run()

    assert first.status == RunStatus.CLEAN
    assert first.messages_sent == 1
    assert first.events_processed == 1
    assert second.status == RunStatus.NO_EVENTS
    assert second.reason == "no_pending_checkouts"
    assert len(whatsapp.sent) == 1
    assert len(storage.message_logs.with_status(MessageStatus.SENT)) == 1
    assert len(storage.processed_events.rows) == 1


@pytest.mark.asyncio
async def test_checkouts_for_one_recipient_are_consolidated(
    pipeline, storage, fetcher, whatsapp, make_property, rita
):
    fetcher.feeds["https://ical/loft"] = [booking("a1", "Maria", date(2024, 11, 20), TODAY)]
    fetcher.feeds["https://ical/casa"] = [booking("b1", "João", date(2024, 11, 21), TODAY)]
    storage.properties.properties += [
        make_property("p1", "Loft A", [rita], ["https://ical/loft"], checkout_time="11:00"),
        make_property("p2", "Casa B", [rita], ["https://ical/casa"], checkout_time="12:00"),
    ]

    summary = await pipeline.run()

    assert summary.messages_sent == 1
    assert summary.events_processed == 2
    assert whatsapp.sent == [
        (
            "+5511988887777",
            "Olá Rita! Hoje você tem 2 limpezas:\n\n• Loft A às 11:00\n• Casa B às 12:00\n\nBom trabalho!",
        )
    ]


@pytest.mark.asyncio
async def test_failed_calendar_does_not_affect_other_properties(
    pipeline, storage, fetcher, whatsapp, make_property, rita, make_recipient
):
    fetcher.failing.add("https://ical/broken")
    fetcher.feeds["https://ical/casa"] = [booking("b1", "João", date(2024, 11, 21), TODAY)]
    storage.properties.properties += [
        make_property("p1", "Loft A", [make_recipient("Joana", "11977776666")], ["https://ical/broken"]),
        make_property("p2", "Casa B", [rita], ["https://ical/casa"]),
    ]

    summary = await pipeline.run()

    assert summary.status == RunStatus.CLEAN
    assert [contact for contact, _ in whatsapp.sent] == ["+5511988887777"]


@pytest.mark.asyncio
async def test_other_days_and_blocked_events_are_ignored(pipeline, storage, fetcher, whatsapp, make_property, rita):
    fetcher.feeds["https://ical/loft"] = [
        booking("a1", "Maria", date(2024, 11, 20), date(2024, 11, 24)),
        RawEvent(uid="blk", summary="Airbnb (Not available)", description="", start=date(2024, 11, 22), end=TODAY),
    ]
    storage.properties.properties.append(make_property("p1", "Loft A", [rita], ["https://ical/loft"]))

    summary = await pipeline.run()

    assert summary.status == RunStatus.NO_EVENTS
    assert whatsapp.attempts == 0


@pytest.mark.asyncio
async def test_explicit_target_date(pipeline, storage, fetcher, whatsapp, make_property, rita):
    fetcher.feeds["https://ical/loft"] = [booking("a1", "Maria", date(2024, 11, 20), date(2024, 11, 24))]
    storage.properties.properties.append(make_property("p1", "Loft A", [rita], ["https://ical/loft"]))

    summary = await pipeline.run(target_date=date(2024, 11, 24))

    assert summary.target_date == date(2024, 11, 24)
    assert summary.messages_sent == 1


@pytest.mark.asyncio
async def test_disconnected_channel_marks_run_not_run(pipeline, storage, fetcher, whatsapp, make_property, rita):
    whatsapp.connected = False
    fetcher.feeds["https://ical/loft"] = [booking("a1", "Maria", date(2024, 11, 20), TODAY)]
    storage.properties.properties.append(make_property("p1", "Loft A", [rita], ["https://ical/loft"]))

    summary = await pipeline.run()

    assert summary.status == RunStatus.NOT_RUN
    assert summary.reason == "channel_disconnected: whatsapp"
    assert storage.processed_events.rows == set()

    whatsapp.connected = True
    retry = await pipeline.run()
    assert retry.status == RunStatus.CLEAN


@pytest.mark.asyncio
async def test_failed_send_is_partial_and_retried(
    pipeline, storage, fetcher, whatsapp, make_property, rita, make_recipient
):
    whatsapp.fail_for = {"+5511977776666"}
    fetcher.feeds["https://ical/loft"] = [booking("a1", "Maria", date(2024, 11, 20), TODAY)]
    fetcher.feeds["https://ical/casa"] = [booking("b1", "João", date(2024, 11, 21), TODAY)]
    storage.properties.properties += [
        make_property("p1", "Loft A", [rita], ["https://ical/loft"]),
        make_property("p2", "Casa B", [make_recipient("Joana", "11977776666")], ["https://ical/casa"]),
    ]

    summary = await pipeline.run()

    assert summary.status == RunStatus.PARTIAL
    assert (summary.messages_sent, summary.messages_failed) == (1, 1)

    whatsapp.fail_for = set()
    retry = await pipeline.run()
    assert (retry.status, retry.messages_sent) == (RunStatus.CLEAN, 1)
    assert whatsapp.sent[-1][0] == "+5511977776666"


@pytest.mark.asyncio
async def test_no_active_properties(pipeline):
    summary = await pipeline.run()

    assert summary.status == RunStatus.NO_EVENTS
    assert summary.reason == "no_active_properties"


@pytest.mark.asyncio
async def test_checkouts_without_recipients(pipeline, storage, fetcher, make_property):
    fetcher.feeds["https://ical/loft"] = [booking("a1", "Maria", date(2024, 11, 20), TODAY)]
    storage.properties.properties.append(make_property("p1", "Loft A", [], ["https://ical/loft"]))

    summary = await pipeline.run()

    assert summary.reason == "no_recipients"


@pytest.mark.asyncio
async def test_every_cleaner_of_a_property_is_notified(
    pipeline, storage, fetcher, whatsapp, make_property, rita, make_recipient
):
    ana = make_recipient("Ana", "11977776666")
    fetcher.feeds["https://ical/loft"] = [booking("a1", "Maria", date(2024, 11, 20), TODAY)]
    storage.properties.properties.append(make_property("p1", "Loft A", [rita, ana], ["https://ical/loft"]))

    first = await pipeline.run()
    second = await pipeline.run()

    assert sorted(contact for contact, _ in whatsapp.sent) == ["+5511977776666", "+5511988887777"]
    assert (first.status, first.messages_sent, first.messages_skipped) == (RunStatus.CLEAN, 2, 0)
    assert first.events_processed == 1
    assert len(storage.processed_events.rows) == 1
    assert second.status == RunStatus.NO_EVENTS


@pytest.mark.asyncio
async def test_failed_cleaner_leaves_shared_checkout_for_retry(
    pipeline, storage, fetcher, whatsapp, make_property, rita, make_recipient
):
    whatsapp.fail_for = {"+5511977776666"}
    fetcher.feeds["https://ical/loft"] = [booking("a1", "Maria", date(2024, 11, 20), TODAY)]
    storage.properties.properties.append(
        make_property("p1", "Loft A", [rita, make_recipient("Ana", "11977776666")], ["https://ical/loft"])
    )

    first = await pipeline.run()

    assert first.status == RunStatus.PARTIAL
    assert storage.processed_events.rows == set()

    whatsapp.fail_for = set()
    retry = await pipeline.run()

    assert retry.status == RunStatus.CLEAN
    assert "+5511977776666" in [contact for contact, _ in whatsapp.sent]
    assert len(storage.processed_events.rows) == 1
