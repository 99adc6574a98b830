"""SMTP email sender -- plain-text summary to a fixed recipient list."""

from __future__ import annotations

import asyncio
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr

from app.config import settings
from app.errors import DeliveryFailure
from app.models import NotificationChannel
from app.services.notifications.base import NotificationSender
from app.services.notifications.config import EmailConfig
from app.services.notifications.message import (
    BuildNotification,
    format_duration,
    format_size,
    headline,
)

_IMPLICIT_TLS_PORT = 465


class EmailSender(NotificationSender):
    channel = NotificationChannel.EMAIL

    def __init__(self, config: EmailConfig) -> None:
        self._config = config

    @property
    def is_configured(self) -> bool:
        return self._config.is_configured

    async def send(self, notification: BuildNotification) -> None:
        if not self.is_configured:
            raise DeliveryFailure(self.channel.value, "not configured")
        subject = f"[{notification.project_name}] {headline(notification)}"
        await self._deliver(subject, build_body(notification))

    async def test(self) -> tuple[bool, str]:
        if not self.is_configured:
            return False, "Email is not configured"
        try:
            await self._deliver(
                "Test Notification",
                "Build Automation notification system is working correctly!",
            )
        except DeliveryFailure as exc:
            return False, str(exc)
        return True, "Test notification sent successfully"

    async def _deliver(self, subject: str, body: str) -> None:
        message = self._compose(subject, body)
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise DeliveryFailure(self.channel.value, str(exc) or type(exc).__name__) from exc

    def _compose(self, subject: str, body: str) -> EmailMessage:
        smtp = self._config.smtp
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = formataddr((smtp.from_name or "", smtp.from_address or smtp.username or ""))
        message["To"] = ", ".join(self._config.recipients)
        message.set_content(body)
        return message

    def _send_blocking(self, message: EmailMessage) -> None:
        smtp = self._config.smtp
        timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
        if smtp.use_ssl and smtp.port == _IMPLICIT_TLS_PORT:
            client = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=timeout,
                                      context=ssl.create_default_context())
        else:
            client = smtplib.SMTP(smtp.host, smtp.port, timeout=timeout)
        with client:
            if smtp.use_ssl and smtp.port != _IMPLICIT_TLS_PORT:
                client.starttls(context=ssl.create_default_context())
            client.login(smtp.username, smtp.password)
            client.send_message(message)


def build_body(notification: BuildNotification) -> str:
    lines = [
        headline(notification),
        "",
        f"Project:      {notification.project_name}",
        f"Branch:       {notification.branch}",
        f"Status:       {notification.status.value}",
        f"Triggered By: {notification.triggered_by or 'System'}",
    ]
    if notification.duration is not None:
        lines.append(f"Duration:     {format_duration(notification.duration)}")
    if notification.build_size is not None:
        lines.append(f"Size:         {format_size(notification.build_size)}")
    if notification.error_message:
        lines += ["", "Error:", notification.error_message]
    return "\n".join(lines) + "\n"
