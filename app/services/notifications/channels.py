"""
Notification transports.

Every channel exposes the same narrow surface: ``get_status()`` reports whether
the provider session is usable and ``send()`` delivers one text, returning the
provider message id or raising ChannelError. Channels are plain objects built
once at startup and handed to the dispatcher through a ChannelRegistry.
"""

import asyncio
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import resend

from app.config import Settings
from app.infrastructure.observability.logging import get_logger
from app.models.domain.notification_domain import ChannelStatus
from app.models.domain.property_domain import Channel

logger = get_logger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
DEFAULT_CHANNEL_TIMEOUT = 15.0


class ChannelError(Exception):
    """A single send was rejected or failed in transit."""

    def __init__(self, message: str, channel: str, status_code: int | None = None):
        super().__init__(message)
        self.channel = channel
        self.status_code = status_code


class ChannelDisconnectedError(ChannelError):
    """The channel session is down; nothing should be sent through it."""


def format_phone_number(phone: str) -> str:
    """
    Normalize a phone number to E.164.

    10-11 digit numbers are Brazilian numbers without country code.
    """
    if not phone:
        return ""

    stripped = phone.strip()
    digits = re.sub(r"\D", "", stripped)
    if stripped.startswith("+"):
        return f"+{digits}"
    if len(digits) in (10, 11):
        return f"+55{digits}"
    return f"+{digits}"


class NotificationChannel:
    """Base transport. Subclasses implement get_status and send."""

    name: Channel

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float = DEFAULT_CHANNEL_TIMEOUT):
        self._client = client
        self.timeout = timeout

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                yield client

    async def get_status(self) -> ChannelStatus:
        raise NotImplementedError

    async def send(self, contact: str, text: str, subject: str | None = None) -> str | None:
        raise NotImplementedError


class WhatsAppChannel(NotificationChannel):
    """WhatsApp Cloud API."""

    name = Channel.WHATSAPP

    def __init__(
        self,
        api_url: str,
        phone_number_id: str | None,
        access_token: str | None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_CHANNEL_TIMEOUT,
    ):
        super().__init__(client, timeout)
        self.api_url = api_url.rstrip("/")
        self.phone_number_id = phone_number_id
        self.access_token = access_token

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def get_status(self) -> ChannelStatus:
        if not (self.phone_number_id and self.access_token):
            return ChannelStatus(connected=False, detail="not_configured")

        try:
            async with self._http() as client:
                response = await client.get(
                    f"{self.api_url}/{self.phone_number_id}",
                    params={"fields": "id,display_phone_number,quality_rating"},
                    headers=self._headers,
                )
        except httpx.HTTPError as e:
            logger.warning("WhatsApp status check failed", error=str(e))
            return ChannelStatus(connected=False, detail=f"network_error: {e}")

        if response.status_code != 200:
            return ChannelStatus(connected=False, detail=f"http_{response.status_code}")
        return ChannelStatus(connected=True)

    async def send(self, contact: str, text: str, subject: str | None = None) -> str | None:
        payload = {
            "messaging_product": "whatsapp",
            "to": re.sub(r"\D", "", contact),
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }
        try:
            async with self._http() as client:
                response = await client.post(
                    f"{self.api_url}/{self.phone_number_id}/messages",
                    json=payload,
                    headers=self._headers,
                )
        except httpx.HTTPError as e:
            raise ChannelError(f"WhatsApp request failed: {e}", channel=self.name) from e

        if response.status_code not in (200, 201):
            raise ChannelError(
                f"WhatsApp rejected message: {response.text[:200]}",
                channel=self.name,
                status_code=response.status_code,
            )

        messages = response.json().get("messages") or [{}]
        return messages[0].get("id")


class SmsChannel(NotificationChannel):
    """Twilio Programmable Messaging over the REST API."""

    name = Channel.SMS

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_CHANNEL_TIMEOUT,
    ):
        super().__init__(client, timeout)
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number

    async def get_status(self) -> ChannelStatus:
        if not (self.account_sid and self.auth_token and self.from_number):
            return ChannelStatus(connected=False, detail="not_configured")

        try:
            async with self._http() as client:
                response = await client.get(
                    f"{TWILIO_API_URL}/Accounts/{self.account_sid}.json",
                    auth=(self.account_sid, self.auth_token),
                )
        except httpx.HTTPError as e:
            logger.warning("Twilio status check failed", error=str(e))
            return ChannelStatus(connected=False, detail=f"network_error: {e}")

        if response.status_code != 200:
            return ChannelStatus(connected=False, detail=f"http_{response.status_code}")

        account_status = response.json().get("status")
        if account_status != "active":
            return ChannelStatus(connected=False, detail=f"account_{account_status}")
        return ChannelStatus(connected=True)

    async def send(self, contact: str, text: str, subject: str | None = None) -> str | None:
        try:
            async with self._http() as client:
                response = await client.post(
                    f"{TWILIO_API_URL}/Accounts/{self.account_sid}/Messages.json",
                    auth=(self.account_sid, self.auth_token),
                    data={"To": format_phone_number(contact), "From": self.from_number, "Body": text},
                )
        except httpx.HTTPError as e:
            raise ChannelError(f"Twilio request failed: {e}", channel=self.name) from e

        if response.status_code not in (200, 201):
            raise ChannelError(
                f"Twilio rejected message: {response.text[:200]}",
                channel=self.name,
                status_code=response.status_code,
            )
        return response.json().get("sid")


class EmailChannel(NotificationChannel):
    """Email through Resend. The SDK is synchronous, so sends run in a worker thread."""

    name = Channel.EMAIL

    def __init__(self, api_key: str | None, sender: str, default_subject: str = "Notificação"):
        super().__init__()
        self.api_key = api_key
        self.sender = sender
        self.default_subject = default_subject

    async def get_status(self) -> ChannelStatus:
        if not self.api_key:
            return ChannelStatus(connected=False, detail="not_configured")
        return ChannelStatus(connected=True)

    async def send(self, contact: str, text: str, subject: str | None = None) -> str | None:
        resend.api_key = self.api_key
        params = {
            "from": self.sender,
            "to": [contact],
            "subject": subject or self.default_subject,
            "text": text,
        }
        try:
            response = await asyncio.to_thread(resend.Emails.send, params)
        except Exception as e:
            raise ChannelError(f"Resend send failed: {e}", channel=self.name) from e

        if isinstance(response, dict):
            return response.get("id")
        return getattr(response, "id", None)


class ChannelRegistry:
    """Channels by name. An unregistered channel is reported as disconnected."""

    def __init__(self, channels: list[NotificationChannel] | None = None):
        self._channels: dict[str, NotificationChannel] = {}
        for channel in channels or []:
            self.register(channel)

    def register(self, channel: NotificationChannel) -> None:
        self._channels[str(channel.name)] = channel

    def get(self, name: str) -> NotificationChannel | None:
        return self._channels.get(str(name))

    @property
    def names(self) -> list[str]:
        return sorted(self._channels)

    async def get_status(self, name: str) -> ChannelStatus:
        channel = self.get(name)
        if channel is None:
            return ChannelStatus(connected=False, detail="not_registered")
        try:
            return await channel.get_status()
        except (httpx.HTTPError, ChannelError) as e:
            return ChannelStatus(connected=False, detail=str(e))

    async def require_connected(self, name: str) -> None:
        """
        Raises:
            ChannelDisconnectedError: If the channel is missing or its session is down
        """
        status = await self.get_status(name)
        if not status.connected:
            raise ChannelDisconnectedError(f"Channel {name} is disconnected: {status.detail}", channel=str(name))

    async def status_all(self) -> dict[str, dict]:
        statuses = {}
        for name in self.names:
            status = await self.get_status(name)
            statuses[name] = {"connected": status.connected, "detail": status.detail}
        return statuses


def build_channel_registry(settings: Settings, client: httpx.AsyncClient | None = None) -> ChannelRegistry:
    """Register every transport; unconfigured ones report not_configured."""
    return ChannelRegistry(
        [
            WhatsAppChannel(
                settings.WHATSAPP_API_URL,
                settings.WHATSAPP_PHONE_NUMBER_ID,
                settings.WHATSAPP_ACCESS_TOKEN,
                client=client,
            ),
            SmsChannel(
                settings.TWILIO_ACCOUNT_SID,
                settings.TWILIO_AUTH_TOKEN,
                settings.TWILIO_FROM_NUMBER,
                client=client,
            ),
            EmailChannel(settings.RESEND_API_KEY, settings.EMAIL_FROM),
        ]
    )
