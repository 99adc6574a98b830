"""Generic JSON webhook sender with optional HMAC signature."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx

from app.errors import DeliveryFailure
from app.models import NotificationChannel
from app.services.notifications.base import HttpJsonSender
from app.services.notifications.config import WebhookConfig
from app.services.notifications.message import BuildNotification
from app.webhooks import sign_payload

EVENT_HEADER = "X-Webhook-Event"
SIGNATURE_HEADER = "X-Webhook-Signature"


class WebhookSender(HttpJsonSender):
    channel = NotificationChannel.WEBHOOK

    def __init__(self, config: WebhookConfig, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(client)
        self._config = config

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    def _headers(self, body: bytes, event_name: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json", EVENT_HEADER: event_name}
        if self._config.secret:
            headers[SIGNATURE_HEADER] = sign_payload(body, self._config.secret)
        return headers

    async def send(self, notification: BuildNotification) -> None:
        if not self.is_configured:
            raise DeliveryFailure(self.channel.value, "not configured")
        body = encode_body(build_payload(notification))
        await self._post(
            self._config.url,
            content=body,
            headers=self._headers(body, notification.event.value),
        )

    async def test(self) -> tuple[bool, str]:
        body = encode_body({
            "event": "test",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": "Build Automation notification system is working correctly!",
        })
        return await self._run_test(
            url=self._config.url,
            content=body,
            headers=self._headers(body, "test") if self.is_configured else None,
        )


def encode_body(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")


def build_payload(notification: BuildNotification) -> dict:
    duration = notification.duration.total_seconds() if notification.duration is not None else None
    return {
        "event": notification.event.value,
        "timestamp": notification.sent_at.isoformat(),
        "build": {
            "id": str(notification.build_id),
            "number": notification.build_number,
            "project": notification.project_name,
            "branch": notification.branch,
            "status": notification.status.value,
            "errorMessage": notification.error_message,
            "durationSeconds": duration,
            "sizeBytes": notification.build_size,
            "triggeredBy": notification.triggered_by,
        },
    }
