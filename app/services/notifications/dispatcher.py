"""Notification dispatcher -- resolve config, filter channels, fan out.

``send_notification`` is the only entry point the build state machine
uses.  It never raises: every failure (config load, a single channel's
delivery) is logged and swallowed so a notification problem can never
fault or block a lifecycle transition.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from app.errors import BadRequestError, DeliveryFailure
from app.models import NotificationChannel, NotificationEvent
from app.repos import settings_repo
from app.services.notifications.base import NotificationSender
from app.services.notifications.config import (
    NotificationConfig,
    parse_global_config,
    resolve_config,
)
from app.services.notifications.discord import DiscordSender
from app.services.notifications.mail import EmailSender
from app.services.notifications.message import BuildNotification
from app.services.notifications.slack import SlackSender
from app.services.notifications.webhook import WebhookSender

logger = logging.getLogger(__name__)

NOTIFICATION_CONFIG_KEY = "notifications"


async def get_config() -> NotificationConfig:
    """Load the global notification settings (defaults if unset or invalid)."""
    raw = await settings_repo.get_setting(NOTIFICATION_CONFIG_KEY)
    return parse_global_config(raw)


async def save_config(config: NotificationConfig) -> None:
    await settings_repo.set_setting(
        NOTIFICATION_CONFIG_KEY,
        config.model_dump_json(by_alias=True),
    )


def build_senders(
    config: NotificationConfig,
    client: httpx.AsyncClient | None = None,
) -> dict[NotificationChannel, NotificationSender]:
    return {
        NotificationChannel.DISCORD: DiscordSender(config.discord, client),
        NotificationChannel.SLACK: SlackSender(config.slack, client),
        NotificationChannel.WEBHOOK: WebhookSender(config.webhook, client),
        NotificationChannel.EMAIL: EmailSender(config.email),
    }


def eligible_channels(
    config: NotificationConfig,
    event: NotificationEvent,
) -> list[NotificationChannel]:
    """Channels that are configured and subscribed to *event*."""
    blocks = {
        NotificationChannel.DISCORD: config.discord,
        NotificationChannel.SLACK: config.slack,
        NotificationChannel.WEBHOOK: config.webhook,
        NotificationChannel.EMAIL: config.email,
    }
    return [channel for channel, block in blocks.items() if block.wants(event)]


async def send_notification(
    notification: BuildNotification,
    *,
    client: httpx.AsyncClient | None = None,
) -> int:
    """Deliver *notification* on every eligible channel concurrently.

    Returns the number of channels that accepted the message.
    """
    try:
        global_config = await get_config()
    except Exception:
        logger.exception(
            "Could not load notification settings for build %s; skipping %s",
            notification.build_id, notification.event.value,
        )
        return 0

    config = resolve_config(global_config, notification.project_settings_json)
    channels = eligible_channels(config, notification.event)
    if not channels:
        return 0

    senders = build_senders(config, client)
    results = await asyncio.gather(
        *(_send_with_logging(senders[channel], notification) for channel in channels)
    )
    delivered = sum(1 for ok in results if ok)
    logger.info(
        "Sent %d/%d notifications for %s on build %s",
        delivered, len(channels), notification.event.value, notification.build_id,
    )
    return delivered


async def _send_with_logging(sender: NotificationSender, notification: BuildNotification) -> bool:
    try:
        await sender.send(notification)
    except DeliveryFailure as exc:
        logger.warning(
            "Failed to send %s notification for build %s: %s",
            sender.channel.value, notification.build_id, exc,
        )
        return False
    except Exception:
        logger.exception(
            "Exception sending %s notification for build %s",
            sender.channel.value, notification.build_id,
        )
        return False
    return True


async def test_channel(
    channel: NotificationChannel | str,
    *,
    client: httpx.AsyncClient | None = None,
) -> tuple[bool, str]:
    """Send a test message through one channel using the global settings."""
    try:
        channel = NotificationChannel(channel)
    except ValueError:
        raise BadRequestError(f"Unknown channel: {channel}") from None
    config = await get_config()
    return await build_senders(config, client)[channel].test()
