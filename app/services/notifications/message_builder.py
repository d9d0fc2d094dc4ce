"""
Recipient grouping and message rendering for cleaning notifications.

Checkouts are grouped by the recipient's normalized phone number, so one
phone gets exactly one message per run even if it is linked to several
properties through different recipient rows.
"""

from collections import defaultdict
from collections.abc import Iterable
from datetime import time

from app.infrastructure.observability.logging import get_logger
from app.models.domain.calendar_domain import CalendarEvent
from app.models.domain.notification_domain import CheckoutItem, RenderedMessage
from app.models.domain.property_domain import Channel, Property, Recipient
from app.repositories.template_repository import TemplateRepository
from app.services.notifications.channels import format_phone_number
from app.services.notifications.templates import (
    TemplateContext,
    default_cleaning_message,
    format_checkout_list,
    render_template,
)

logger = get_logger(__name__)

CLEANING_TEMPLATE = "cleaning"
CLEANING_MULTIPLE_TEMPLATE = "cleaning_multiple"


def sort_items(items: Iterable[CheckoutItem]) -> list[CheckoutItem]:
    return sorted(items, key=lambda item: (item.checkout_time, item.property_name))


class MessageBuilder:
    def __init__(self, templates: TemplateRepository, default_checkout_time: str = "11:00"):
        self.templates = templates
        self.default_checkout_time = default_checkout_time

    def checkout_time_for(self, event: CalendarEvent, prop: Property) -> str:
        """Explicit end time from the feed, else the property's, else the default."""
        if event.end.time() != time(0, 0):
            return event.end.strftime("%H:%M")
        return prop.checkout_time or self.default_checkout_time

    def to_item(self, event: CalendarEvent, prop: Property) -> CheckoutItem:
        return CheckoutItem(
            property_id=prop.id,
            property_name=prop.name,
            account_id=prop.account_id,
            event_uid=event.uid,
            checkout_date=event.checkout_date,
            checkout_time=self.checkout_time_for(event, prop),
            guest_name=event.guest_name,
        )

    def group(
        self, checkouts: list[CalendarEvent], properties_by_id: dict[str, Property]
    ) -> dict[str, tuple[Recipient, list[CheckoutItem]]]:
        """Checkout items per normalized recipient phone."""
        recipients: dict[str, Recipient] = {}
        grouped: dict[str, dict] = defaultdict(dict)

        for event in checkouts:
            prop = properties_by_id.get(event.property_id)
            if prop is None:
                logger.warning("Checkout for unknown property", property_id=event.property_id, uid=event.uid)
                continue
            if not prop.recipients:
                logger.warning("Property has no recipient, skipping checkout", property_id=prop.id, uid=event.uid)
                continue

            item = self.to_item(event, prop)
            for recipient in prop.recipients:
                phone = format_phone_number(recipient.phone)
                if not phone:
                    logger.warning("Recipient without phone", recipient_id=recipient.id)
                    continue
                recipients.setdefault(phone, recipient)
                grouped[phone][item.ledger_key] = item

        return {phone: (recipients[phone], sort_items(items.values())) for phone, items in grouped.items()}

    async def group_and_render(
        self, checkouts: list[CalendarEvent], properties_by_id: dict[str, Property]
    ) -> dict[str, RenderedMessage]:
        """
        Build one fully rendered message per recipient phone.

        Args:
            checkouts: Non-blocked checkout events for the target date
            properties_by_id: Active properties keyed by id

        Returns:
            Rendered messages keyed by E.164 phone
        """
        messages: dict[str, RenderedMessage] = {}
        for phone, (recipient, items) in sorted(self.group(checkouts, properties_by_id).items()):
            message = await self.render(phone, recipient, items)
            if message is not None:
                messages[phone] = message
        return messages

    async def render(self, phone: str, recipient: Recipient, items: list[CheckoutItem]) -> RenderedMessage | None:
        if not items:
            return None

        channel = recipient.channel
        contact = recipient.contact_for(channel) if channel == Channel.EMAIL else phone
        if not contact:
            logger.warning("Recipient has no contact for channel", recipient_id=recipient.id, channel=channel.value)
            return None

        items = sort_items(items)
        body, subject = await self.render_body(recipient, items)
        return RenderedMessage(
            recipient_phone=phone,
            recipient_name=recipient.name,
            contact=contact,
            channel=channel,
            body=body,
            subject=subject,
            message_type=CLEANING_TEMPLATE,
            account_id=items[0].account_id,
            event_keys=[item.ledger_key for item in items],
            items=items,
        )

    async def render_body(self, recipient: Recipient, items: list[CheckoutItem]) -> tuple[str, str | None]:
        template_type = CLEANING_TEMPLATE if len(items) == 1 else CLEANING_MULTIPLE_TEMPLATE
        template = await self.templates.get(template_type, recipient.channel, items[0].account_id)
        if template is None:
            return default_cleaning_message(recipient.name, items), None

        first = items[0]
        context = TemplateContext(
            employee_name=recipient.name,
            property_name=", ".join(dict.fromkeys(item.property_name for item in items)),
            checkout_date=first.checkout_date,
            checkout_time=first.checkout_time,
            guest_name=first.guest_name,
            checkout_list=format_checkout_list(items),
            checkout_count=len(items),
        )
        subject = render_template(template.subject, context) if template.subject else None
        return render_template(template.content, context), subject

    async def rerender(self, message: RenderedMessage, items: list[CheckoutItem]) -> RenderedMessage | None:
        """Rebuild a message from a subset of its items, keeping recipient and channel."""
        if not items:
            return None

        recipient = Recipient(
            id="",
            account_id=message.account_id,
            name=message.recipient_name,
            phone=message.recipient_phone,
            channel=message.channel,
        )
        items = sort_items(items)
        body, subject = await self.render_body(recipient, items)
        return RenderedMessage(
            recipient_phone=message.recipient_phone,
            recipient_name=message.recipient_name,
            contact=message.contact,
            channel=message.channel,
            body=body,
            subject=subject,
            message_type=message.message_type,
            account_id=message.account_id,
            event_keys=[item.ledger_key for item in items],
            items=items,
        )
