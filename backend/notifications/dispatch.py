"""
Notification Dispatch — records and sends guard / escalation messages.

For each recipient:
  1. Pick channels: the user's own ordered list, else the audience default
  2. Keep channels that are active and where the user has an address
  3. Create a pending Notification row, send, mark sent or failed

Send failures never raise out of dispatch; they are logged and recorded
on the Notification row.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Iterable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.models import Alert, Notification, NotificationChannel, RiskNotification, User
from notifications.channels import ChannelRegistry, ChannelType, MessagePayload, address_for, default_registry
from notifications.templates import GuardContext, RenderedMessage, render_escalation, render_guard

logger = structlog.get_logger()


class Audience(str, Enum):
    GUARD = "guard"
    ESCALATION = "escalation"


def _parse_channels(values: Iterable[str] | None) -> list[ChannelType]:
    channels = []
    for value in values or []:
        try:
            channel = ChannelType(str(value).lower())
        except ValueError:
            logger.warning("notification.unknown_channel", channel=value)
            continue
        if channel not in channels:
            channels.append(channel)
    return channels


def channel_policy(user: User, audience: Audience, settings: Settings | None = None) -> list[ChannelType]:
    """Ordered channel preference for a user in an audience."""
    if user.notification_channels:
        return _parse_channels(user.notification_channels)
    settings = settings or get_settings()
    defaults = settings.guard_channels if audience == Audience.GUARD else settings.escalation_channels
    return _parse_channels(defaults)


class NotificationDispatcher:
    """Creates Notification rows and hands payloads to channel transports."""

    def __init__(
        self,
        db: AsyncSession,
        registry: ChannelRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.registry = registry or default_registry(self.settings)

    async def active_channels(self) -> dict[ChannelType, NotificationChannel]:
        result = await self.db.execute(select(NotificationChannel).where(NotificationChannel.active.is_(True)))
        channels = {}
        for row in result.scalars().all():
            try:
                channels[ChannelType(row.name)] = row
            except ValueError:
                continue
        return channels

    def routes_for(
        self,
        user: User,
        audience: Audience,
        active: dict[ChannelType, NotificationChannel],
    ) -> list[tuple[ChannelType, str]]:
        routes = []
        for channel in channel_policy(user, audience, self.settings):
            if channel not in active:
                logger.debug("notification.channel_inactive", channel=channel.value, user_id=str(user.user_id))
                continue
            address = address_for(user, channel)
            if not address:
                logger.warning("notification.no_address", channel=channel.value, user_id=str(user.user_id))
                continue
            routes.append((channel, address))
        return routes

    async def deliver(
        self,
        alert: Alert,
        user: User,
        channel_row: NotificationChannel,
        channel: ChannelType,
        address: str,
        message: RenderedMessage,
    ) -> Notification:
        payload = MessagePayload(to=address, subject=message.subject, body=message.body, metadata=message.metadata)
        notification = Notification(
            alert_id=alert.alert_id,
            user_id=user.user_id,
            channel_id=channel_row.channel_id,
            status="pending",
            payload={"to": address, "subject": message.subject, "body": message.body},
        )
        self.db.add(notification)
        await self.db.flush()

        transport = self.registry.get(channel)
        sent = False
        if transport is not None:
            try:
                sent = await transport.send(payload)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "notification.send_failed",
                    channel=channel.value,
                    user_id=str(user.user_id),
                    error=str(exc),
                )

        notification.status = "sent" if sent else "failed"
        notification.sent_at = datetime.utcnow()
        await self.db.flush()

        if sent:
            logger.info("notification.sent", channel=channel.value, user_id=str(user.user_id))
        else:
            logger.warning("notification.failed", channel=channel.value, user_id=str(user.user_id))
        return notification

    async def notify_guard(
        self,
        alert: Alert,
        guard: User,
        record: RiskNotification,
        ctx: GuardContext,
    ) -> list[Notification]:
        active = await self.active_channels()
        sent = []
        for channel, address in self.routes_for(guard, Audience.GUARD, active):
            message = render_guard(channel, record, guard, ctx)
            sent.append(await self.deliver(alert, guard, active[channel], channel, address, message))
        if not sent:
            logger.error("notification.guard_unreachable", user_id=str(guard.user_id), record_id=str(record.id))
        return sent

    async def notify_escalation(
        self,
        alert: Alert,
        users: Iterable[User],
        record: RiskNotification,
    ) -> list[Notification]:
        active = await self.active_channels()
        if not active:
            logger.error("notification.no_active_channels", record_id=str(record.id))
            return []

        sent = []
        for user in users:
            for channel, address in self.routes_for(user, Audience.ESCALATION, active):
                message = render_escalation(channel, record)
                sent.append(await self.deliver(alert, user, active[channel], channel, address, message))
        return sent
