"""Discord webhook sender -- one embed per event."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx

from app.errors import DeliveryFailure
from app.models import NotificationChannel
from app.services.notifications.base import HttpJsonSender
from app.services.notifications.config import DiscordConfig
from app.services.notifications.message import (
    EVENT_STYLE,
    BuildNotification,
    format_duration,
    format_size,
    headline,
)

_FOOTER = {"text": "Build Automation"}
_BLUE = 3447003


class DiscordSender(HttpJsonSender):
    channel = NotificationChannel.DISCORD

    def __init__(self, config: DiscordConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(client)
        self._config = config

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    async def send(self, notification: BuildNotification) -> None:
        if not self.is_configured:
            raise DeliveryFailure(self.channel.value, "not configured")
        payload = {"embeds": [build_embed(notification)]}
        await self._post(self._config.webhook_url, json_body=payload)

    async def test(self) -> tuple[bool, str]:
        embed = {
            "title": "\U0001F514 Test Notification",
            "description": "Build Automation notification system is working correctly!",
            "color": _BLUE,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "footer": _FOOTER,
        }
        return await self._run_test(url=self._config.webhook_url, json_body={"embeds": [embed]})


def build_embed(notification: BuildNotification) -> dict:
    _, emoji, color = EVENT_STYLE.get(notification.event, ("", "", _BLUE))
    fields = [
        {"name": "Project", "value": notification.project_name, "inline": True},
        {"name": "Branch", "value": notification.branch, "inline": True},
        {"name": "Status", "value": notification.status.value, "inline": True},
    ]
    if notification.duration is not None:
        fields.append({"name": "Duration", "value": format_duration(notification.duration), "inline": True})
    if notification.build_size is not None:
        fields.append({"name": "Size", "value": format_size(notification.build_size), "inline": True})
    if notification.triggered_by:
        fields.append({"name": "Triggered By", "value": notification.triggered_by, "inline": True})

    embed = {
        "title": f"{emoji} {headline(notification)}".strip(),
        "color": color,
        "fields": fields,
        "timestamp": notification.sent_at.isoformat(),
        "footer": _FOOTER,
    }
    if notification.error_message:
        embed["description"] = f"```\n{notification.error_message}\n```"
    return embed
