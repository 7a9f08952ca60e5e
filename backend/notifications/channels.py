"""
Notification channel transports.

Each channel type (gmail, slack, whatsapp) has one transport that knows how
to deliver a rendered message to an address. The registry maps channel
types to transports so dispatch stays channel-agnostic.

  - gmail:    SendGrid API
  - whatsapp: Twilio Messages REST API (logged only when unconfigured)
  - slack:    incoming webhook, mentioning the user's handle
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
import sendgrid
import structlog
from sendgrid.helpers.mail import Mail

from core.config import Settings, get_settings

logger = structlog.get_logger()

WHATSAPP_MAX_CHARS = 1600
WHATSAPP_PREFIX = "whatsapp:"
TWILIO_ACCEPTED_STATUSES = {"queued", "sending", "sent", "delivered"}
HTTP_TIMEOUT_SECONDS = 10.0


class ChannelType(str, Enum):
    GMAIL = "gmail"
    SLACK = "slack"
    WHATSAPP = "whatsapp"


@dataclass
class MessagePayload:
    """What a transport delivers: one address, one rendered message."""

    to: str
    subject: str
    body: str
    metadata: dict[str, Any] = field(default_factory=dict)


def format_whatsapp_to(phone: str | None) -> str | None:
    """Normalize a phone number into Twilio's ``whatsapp:+<digits>`` form."""
    if not phone:
        return None
    cleaned = re.sub(r"[\s\-()]", "", phone)
    if not cleaned:
        return None
    if cleaned.startswith(WHATSAPP_PREFIX):
        return cleaned
    if not cleaned.startswith("+"):
        cleaned = "+" + cleaned
    return f"{WHATSAPP_PREFIX}{cleaned}"


def address_for(user, channel: ChannelType) -> str | None:
    """The user's address on a channel, or None when they have none."""
    if channel == ChannelType.GMAIL:
        return user.email or None
    if channel == ChannelType.WHATSAPP:
        return format_whatsapp_to(user.phone)
    if channel == ChannelType.SLACK:
        return user.slack_handle or None
    return None


# ── Transports ─────────────────────────────────────────────────────────────


class ChannelTransport(ABC):
    """Delivers a payload over one channel. Returns True when accepted."""

    channel_type: ChannelType

    @abstractmethod
    async def send(self, payload: MessagePayload) -> bool: ...


class SendGridEmailTransport(ChannelTransport):
    channel_type = ChannelType.GMAIL

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    async def send(self, payload: MessagePayload) -> bool:
        if not payload.to:
            logger.error("notification.email_missing_recipient")
            return False
        if not self.settings.sendgrid_api_key:
            logger.error("notification.email_unconfigured", to=payload.to)
            return False

        sg = sendgrid.SendGridAPIClient(api_key=self.settings.sendgrid_api_key)
        email = Mail(
            from_email=self.settings.alert_from_email,
            to_emails=payload.to,
            subject=payload.subject,
            html_content=payload.body,
        )
        response = sg.send(email)
        return response.status_code in (200, 201, 202)


class TwilioWhatsAppTransport(ChannelTransport):
    channel_type = ChannelType.WHATSAPP

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.settings.twilio_account_sid and self.settings.twilio_auth_token)

    async def send(self, payload: MessagePayload) -> bool:
        to_number = format_whatsapp_to(payload.to)
        if not to_number:
            logger.error("notification.whatsapp_missing_recipient")
            return False

        body = f"*{payload.subject}*\n\n{payload.body}" if payload.subject else payload.body
        if len(body) > WHATSAPP_MAX_CHARS:
            logger.warning("notification.whatsapp_truncated", length=len(body))
            body = body[:WHATSAPP_MAX_CHARS]

        if not self.configured:
            logger.info("notification.whatsapp_log_only", to=to_number, subject=payload.subject)
            return True

        sid = self.settings.twilio_account_sid
        url = f"{self.settings.twilio_api_base}/Accounts/{sid}/Messages.json"
        data = {
            "From": format_whatsapp_to(self.settings.twilio_from_number),
            "To": to_number,
            "Body": body,
        }
        auth = (sid, self.settings.twilio_auth_token)

        if self._client is not None:
            response = await self._client.post(url, data=data, auth=auth)
        else:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
                response = await client.post(url, data=data, auth=auth)

        if response.status_code >= 400:
            logger.error(
                "notification.whatsapp_rejected",
                status_code=response.status_code,
                detail=response.text[:500],
            )
            return False

        status = response.json().get("status", "")
        logger.info("notification.whatsapp_sent", sid=response.json().get("sid"), status=status)
        return status in TWILIO_ACCEPTED_STATUSES


class SlackWebhookTransport(ChannelTransport):
    channel_type = ChannelType.SLACK

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self._client = client

    def build_message(self, payload: MessagePayload) -> dict[str, Any]:
        handle = payload.to if payload.to.startswith("@") else f"@{payload.to}"
        blocks: list[dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": payload.subject[:150]}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"{handle}\n{payload.body}"}},
        ]
        if payload.metadata:
            blocks.append(
                {
                    "type": "section",
                    "fields": [
                        {"type": "mrkdwn", "text": f"*{key}:*\n{value}"} for key, value in payload.metadata.items()
                    ],
                }
            )
        return {"text": payload.subject, "blocks": blocks}

    async def send(self, payload: MessagePayload) -> bool:
        webhook_url = self.settings.slack_webhook_url
        if not webhook_url:
            logger.error("notification.slack_unconfigured")
            return False

        message = self.build_message(payload)
        if self._client is not None:
            response = await self._client.post(webhook_url, json=message)
        else:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
                response = await client.post(webhook_url, json=message)

        if response.status_code >= 400:
            logger.error("notification.slack_rejected", status_code=response.status_code)
            return False
        return True


# ── Registry ───────────────────────────────────────────────────────────────


class ChannelRegistry:
    """Channel type -> transport lookup."""

    def __init__(self, transports: list[ChannelTransport] | None = None):
        self._transports: dict[ChannelType, ChannelTransport] = {}
        for transport in transports or []:
            self.register(transport)

    def register(self, transport: ChannelTransport) -> None:
        self._transports[transport.channel_type] = transport

    def get(self, channel: ChannelType | str) -> ChannelTransport | None:
        transport = self._transports.get(ChannelType(channel))
        if transport is None:
            logger.warning("notification.transport_missing", channel=str(channel))
        return transport

    def available(self) -> list[ChannelType]:
        return list(self._transports)


def default_registry(settings: Settings | None = None) -> ChannelRegistry:
    settings = settings or get_settings()
    return ChannelRegistry(
        [
            SendGridEmailTransport(settings),
            TwilioWhatsAppTransport(settings),
            SlackWebhookTransport(settings),
        ]
    )
