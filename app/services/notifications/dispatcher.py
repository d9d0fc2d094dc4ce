"""
Message dispatch with ledger claiming.

Each rendered message is delivered inside one storage transaction: its events
are claimed in the processed-events ledger, the message is sent, and the
``sent`` log row is written before commit. A failed send rolls the claims
back so the next run retries those events, and the ``failed`` log row is
written outside the rolled-back transaction.

An event fanned out to several recipients is claimed by the first of them;
later messages in the same batch reuse that claim. If any of them fails the
claim is released again, so the next run retries the event for everyone.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

from app.db.helpers import DatabaseError
from app.infrastructure.observability.logging import get_logger
from app.models.domain.notification_domain import (
    BatchOutcome,
    CheckoutItem,
    DeliveryOutcome,
    DeliveryStatus,
    DispatchResult,
    MessageLog,
    MessageStatus,
    ProcessedEventKey,
    RenderedMessage,
)
from app.models.domain.property_domain import Channel
from app.services.notifications.channels import ChannelDisconnectedError, ChannelError, ChannelRegistry

logger = get_logger(__name__)

Rerender = Callable[[RenderedMessage, list[CheckoutItem]], Awaitable[RenderedMessage | None]]


@dataclass(slots=True)
class BatchClaims:
    """Ledger keys one dispatch_batch call is responsible for."""

    committed: set[ProcessedEventKey] = field(default_factory=set)
    released: set[ProcessedEventKey] = field(default_factory=set)

    def owns(self, key: ProcessedEventKey) -> bool:
        return key in self.committed or key in self.released


class _SendFailed(Exception):
    def __init__(self, message: RenderedMessage, result: DispatchResult):
        super().__init__(result.error)
        self.message = message
        self.result = result


class Dispatcher:
    def __init__(
        self,
        channels: ChannelRegistry,
        storage,
        timeout: float = 30.0,
        rerender: Rerender | None = None,
    ):
        self.channels = channels
        self.storage = storage
        self.timeout = timeout
        self.rerender = rerender

    async def dispatch(
        self, recipient: str, message: str, channel: Channel | str, subject: str | None = None
    ) -> DispatchResult:
        """Send one message. Never raises; failures come back in the result."""
        transport = self.channels.get(channel)
        if transport is None:
            return DispatchResult(success=False, error=f"channel_not_registered: {channel}")

        try:
            provider_id = await asyncio.wait_for(
                transport.send(recipient, message, subject=subject), timeout=self.timeout
            )
        except TimeoutError:
            logger.warning("Dispatch timed out", channel=str(channel), recipient=recipient, timeout=self.timeout)
            return DispatchResult(success=False, error=f"timeout after {self.timeout}s")
        except ChannelError as e:
            logger.warning("Dispatch rejected", channel=str(channel), recipient=recipient, error=str(e))
            return DispatchResult(success=False, error=str(e))
        except Exception as e:
            logger.error(
                "Unexpected dispatch error",
                channel=str(channel),
                recipient=recipient,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DispatchResult(success=False, error=f"{type(e).__name__}: {e}")

        return DispatchResult(success=True, provider_message_id=provider_id)

    async def dispatch_batch(self, messages: Iterable[RenderedMessage]) -> BatchOutcome:
        """
        Deliver a batch of fully rendered messages.

        Every channel the batch uses is checked before the first send. A
        disconnected channel gets no send attempts and no log rows; messages
        on connected channels still go out, each isolated from the others.
        An event shared by several recipients is claimed once and reaches
        all of them.
        """
        messages = list(messages)
        outcome = BatchOutcome()
        claims = BatchClaims()

        for name in sorted({str(m.channel) for m in messages}):
            try:
                await self.channels.require_connected(name)
            except ChannelDisconnectedError as e:
                outcome.disconnected_channels.append(name)
                logger.error("Channel disconnected, aborting its messages", channel=name, detail=str(e))

        for message in messages:
            if str(message.channel) in outcome.disconnected_channels:
                outcome.deliveries.append(
                    DeliveryOutcome(
                        recipient_phone=message.recipient_phone,
                        channel=message.channel,
                        status=DeliveryStatus.CHANNEL_DISCONNECTED,
                        error="channel_disconnected",
                    )
                )
                continue
            outcome.deliveries.append(await self.deliver(message, claims))

        logger.info(
            "Batch dispatched",
            messages=len(messages),
            sent=outcome.sent,
            failed=outcome.failed,
            skipped=outcome.skipped,
            disconnected=outcome.disconnected_channels,
        )
        return outcome

    async def deliver(self, message: RenderedMessage, claims: BatchClaims | None = None) -> DeliveryOutcome:
        """Claim, send and log one message."""
        claims = claims if claims is not None else BatchClaims()
        new_keys: list[ProcessedEventKey] = []
        try:
            async with self.storage.transaction() as conn:
                to_send = await self._claim(message, conn, claims, new_keys)
                if to_send is None:
                    logger.info("Events already handled, skipping", recipient=message.recipient_phone)
                    return DeliveryOutcome(message.recipient_phone, message.channel, DeliveryStatus.SKIPPED)

                result = await self.dispatch(to_send.contact, to_send.body, to_send.channel, to_send.subject)
                if not result.success:
                    raise _SendFailed(to_send, result)

                await self.storage.message_logs.insert(
                    self._log_for(to_send, MessageStatus.SENT, provider_message_id=result.provider_message_id),
                    connection=conn,
                )
        except _SendFailed as failure:
            await self._release(message, claims, new_keys)
            await self._record_failure(failure.message, failure.result.error)
            return DeliveryOutcome(
                message.recipient_phone, message.channel, DeliveryStatus.FAILED, error=failure.result.error
            )
        except DatabaseError as e:
            logger.error(
                "Ledger write failed, events left unclaimed",
                recipient=message.recipient_phone,
                operation=e.operation,
                error=str(e),
            )
            await self._release(message, claims, new_keys)
            return DeliveryOutcome(message.recipient_phone, message.channel, DeliveryStatus.FAILED, error=str(e))

        claims.committed.update(new_keys)
        logger.info(
            "Message sent",
            recipient=to_send.recipient_phone,
            channel=str(to_send.channel),
            events=len(to_send.event_keys),
            provider_message_id=result.provider_message_id,
        )
        return DeliveryOutcome(
            recipient_phone=to_send.recipient_phone,
            channel=to_send.channel,
            status=DeliveryStatus.SENT,
            events_covered=len(new_keys),
            provider_message_id=result.provider_message_id,
        )

    async def _claim(
        self,
        message: RenderedMessage,
        conn,
        claims: BatchClaims,
        new_keys: list[ProcessedEventKey],
    ) -> RenderedMessage | None:
        """Claim the message's events; re-render when only some of them were still free."""
        claimed = []
        for key in message.event_keys:
            if claims.owns(key):
                claimed.append(key)
            elif await self.storage.processed_events.mark_processed(key, connection=conn):
                claimed.append(key)
                new_keys.append(key)

        if not claimed:
            return None
        if len(claimed) == len(message.event_keys):
            return message

        logger.info(
            "Some events already claimed, re-rendering",
            recipient=message.recipient_phone,
            claimed=len(claimed),
            total=len(message.event_keys),
        )
        if self.rerender is None or not message.items:
            message.event_keys = claimed
            return message

        claimed_keys = set(claimed)
        remaining = [item for item in message.items if item.ledger_key in claimed_keys]
        return await self.rerender(message, remaining)

    async def _release(
        self, message: RenderedMessage, claims: BatchClaims, new_keys: list[ProcessedEventKey]
    ) -> None:
        """
        Leave the message's events unclaimed after a failed delivery.

        Claims this batch committed for another recipient of the same event are
        deleted, so the next run retries the event.
        """
        for key in message.event_keys:
            if key in claims.committed:
                try:
                    await self.storage.processed_events.release(key)
                except DatabaseError as e:
                    logger.error(
                        "Could not release claim",
                        recipient=message.recipient_phone,
                        event_uid=key.event_uid,
                        error=str(e),
                    )
                    continue
                claims.committed.discard(key)
                claims.released.add(key)
            elif key in new_keys:
                claims.released.add(key)

    async def _record_failure(self, message: RenderedMessage, error: str | None) -> None:
        try:
            await self.storage.message_logs.insert(self._log_for(message, MessageStatus.FAILED, error=error))
        except DatabaseError as e:
            logger.error("Could not record failed message", recipient=message.recipient_phone, error=str(e))

    @staticmethod
    def _log_for(
        message: RenderedMessage,
        status: MessageStatus,
        provider_message_id: str | None = None,
        error: str | None = None,
    ) -> MessageLog:
        return MessageLog(
            recipient=message.contact,
            channel=message.channel,
            message_type=message.message_type,
            body=message.body,
            status=status,
            property_id=message.property_id,
            account_id=message.account_id,
            provider_message_id=provider_message_id,
            error=error,
        )
