"""Slack incoming-webhook sender -- block kit message."""

from __future__ import annotations

import httpx

from app.errors import DeliveryFailure
from app.models import NotificationChannel
from app.services.notifications.base import HttpJsonSender
from app.services.notifications.config import SlackConfig
from app.services.notifications.message import (
    EVENT_STYLE,
    BuildNotification,
    format_duration,
    format_size,
    headline,
)


class SlackSender(HttpJsonSender):
    channel = NotificationChannel.SLACK

    def __init__(self, config: SlackConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(client)
        self._config = config

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    async def send(self, notification: BuildNotification) -> None:
        if not self.is_configured:
            raise DeliveryFailure(self.channel.value, "not configured")
        await self._post(self._config.webhook_url, json_body={"blocks": build_blocks(notification)})

    async def test(self) -> tuple[bool, str]:
        blocks = [
            _header("\U0001F514 Test Notification"),
            {
                "type": "section",
                "text": _mrkdwn("Build Automation notification system is working correctly!"),
            },
        ]
        return await self._run_test(url=self._config.webhook_url, json_body={"blocks": blocks})


def _mrkdwn(text: str) -> dict:
    return {"type": "mrkdwn", "text": text}


def _header(text: str) -> dict:
    return {"type": "header", "text": {"type": "plain_text", "text": text, "emoji": True}}


def build_blocks(notification: BuildNotification) -> list[dict]:
    emoji = EVENT_STYLE.get(notification.event, ("", "\U0001F4E6", 0))[1]
    blocks: list[dict] = [
        _header(f"{emoji} {headline(notification)}"),
        {
            "type": "section",
            "fields": [
                _mrkdwn(f"*Project:*\n{notification.project_name}"),
                _mrkdwn(f"*Branch:*\n{notification.branch}"),
                _mrkdwn(f"*Status:*\n{notification.status.value}"),
                _mrkdwn(f"*Triggered By:*\n{notification.triggered_by or 'System'}"),
            ],
        },
    ]

    extra = []
    if notification.duration is not None:
        extra.append(_mrkdwn(f"*Duration:*\n{format_duration(notification.duration)}"))
    if notification.build_size is not None:
        extra.append(_mrkdwn(f"*Size:*\n{format_size(notification.build_size)}"))
    if extra:
        blocks.append({"type": "section", "fields": extra})

    if notification.error_message:
        blocks.append({
            "type": "section",
            "text": _mrkdwn(f"*Error:*\n```{notification.error_message}```"),
        })

    blocks.append({"type": "divider"})
    stamp = notification.sent_at.strftime("%Y-%m-%d %H:%M:%S")
    blocks.append({"type": "context", "elements": [_mrkdwn(f"Build Automation • {stamp} UTC")]})
    return blocks
