"""Common base for channel senders."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import httpx

from app.clients import http_client
from app.errors import DeliveryFailure
from app.models import NotificationChannel
from app.services.notifications.message import BuildNotification

logger = logging.getLogger(__name__)


class NotificationSender(ABC):
    """One outbound alert integration.

    ``send`` raises :class:`DeliveryFailure` on any delivery problem; the
    dispatcher logs it.  ``test`` never raises.
    """

    channel: NotificationChannel

    @property
    @abstractmethod
    def is_configured(self) -> bool: ...

    @abstractmethod
    async def send(self, notification: BuildNotification) -> None: ...

    @abstractmethod
    async def test(self) -> tuple[bool, str]: ...


class HttpJsonSender(NotificationSender):
    """Sender that POSTs a JSON document to a single URL."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or http_client.get_client()

    async def _post(
        self,
        url: str,
        *,
        json_body: dict | None = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        try:
            response = await self.client.post(url, json=json_body, content=content, headers=headers)
        except httpx.HTTPError as exc:
            raise DeliveryFailure(self.channel.value, str(exc) or type(exc).__name__) from exc
        if response.is_error:
            logger.error(
                "%s delivery failed: %s - %s",
                self.channel.value, response.status_code, response.text[:500],
            )
            raise DeliveryFailure(self.channel.value, f"returned {response.status_code}")

    async def _run_test(self, **post_kwargs) -> tuple[bool, str]:
        if not self.is_configured:
            return False, f"{self.channel.value} is not configured"
        try:
            await self._post(**post_kwargs)
        except DeliveryFailure as exc:
            return False, str(exc)
        return True, "Test notification sent successfully"
