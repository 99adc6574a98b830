"""Tests for channel senders -- payload shapes, signing, failure mapping."""

import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from uuid import UUID

import httpx
import pytest

from app.errors import DeliveryFailure
from app.models import BuildStatus, NotificationEvent
from app.services.notifications.config import (
    DiscordConfig,
    EmailConfig,
    SlackConfig,
    SmtpSettings,
    WebhookConfig,
)
from app.services.notifications.discord import DiscordSender, build_embed
from app.services.notifications.mail import EmailSender, build_body
from app.services.notifications.message import BuildNotification
from app.services.notifications.slack import SlackSender, build_blocks
from app.services.notifications.webhook import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    WebhookSender,
    build_payload,
)

_BUILD_ID = UUID("55555555-5555-5555-5555-555555555555")
_WHEN = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _notification(**overrides) -> BuildNotification:
    fields = dict(
        event=NotificationEvent.BUILD_FAILED,
        build_id=_BUILD_ID,
        build_number=12,
        project_name="Skyfall",
        branch="main",
        status=BuildStatus.FAILED,
        error_message="CS0246: type not found",
        duration=timedelta(minutes=3, seconds=12),
        build_size=5 * 1_048_576,
        triggered_by="octocat",
        timestamp=_WHEN,
    )
    fields.update(overrides)
    return BuildNotification(**fields)


class Recorder:
    """httpx.MockTransport handler that records requests."""

    def __init__(self, status_code: int = 204):
        self.requests: list[httpx.Request] = []
        self.status_code = status_code

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text="nope" if self.status_code >= 400 else "")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


# ---------------------------------------------------------------------------
# Discord
# ---------------------------------------------------------------------------


def test_discord_embed_shape():
    embed = build_embed(_notification())
    assert embed["title"].endswith("Build #12 Failed")
    assert embed["color"] == 15158332
    assert embed["timestamp"] == _WHEN.isoformat()
    names = [f["name"] for f in embed["fields"]]
    assert names == ["Project", "Branch", "Status", "Duration", "Size", "Triggered By"]
    assert "CS0246" in embed["description"]


def test_discord_embed_without_optional_fields():
    embed = build_embed(_notification(
        event=NotificationEvent.BUILD_STARTED, status=BuildStatus.CLONING,
        error_message=None, duration=None, build_size=None, triggered_by=None,
    ))
    assert [f["name"] for f in embed["fields"]] == ["Project", "Branch", "Status"]
    assert "description" not in embed


@pytest.mark.asyncio
async def test_discord_send_posts_embed():
    rec = Recorder()
    async with rec.client() as client:
        sender = DiscordSender(DiscordConfig(enabled=True, webhook_url="https://discord.test/h"), client)
        await sender.send(_notification())
    assert len(rec.requests) == 1
    body = json.loads(rec.requests[0].content)
    assert body["embeds"][0]["title"].endswith("Build #12 Failed")


@pytest.mark.asyncio
async def test_discord_error_status_raises_delivery_failure():
    rec = Recorder(status_code=500)
    async with rec.client() as client:
        sender = DiscordSender(DiscordConfig(enabled=True, webhook_url="https://discord.test/h"), client)
        with pytest.raises(DeliveryFailure) as exc_info:
            await sender.send(_notification())
    assert exc_info.value.channel == "Discord"
    assert "500" in str(exc_info.value)


@pytest.mark.asyncio
async def test_discord_transport_error_raises_delivery_failure():
    def boom(request):
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(boom)) as client:
        sender = DiscordSender(DiscordConfig(enabled=True, webhook_url="https://discord.test/h"), client)
        with pytest.raises(DeliveryFailure):
            await sender.send(_notification())


@pytest.mark.asyncio
async def test_unconfigured_test_returns_false_without_request():
    rec = Recorder()
    async with rec.client() as client:
        ok, message = await DiscordSender(DiscordConfig(), client).test()
    assert ok is False
    assert "not configured" in message
    assert rec.requests == []


@pytest.mark.asyncio
async def test_test_message_success():
    rec = Recorder()
    async with rec.client() as client:
        ok, message = await DiscordSender(
            DiscordConfig(enabled=True, webhook_url="https://discord.test/h"), client,
        ).test()
    assert ok is True
    assert message == "Test notification sent successfully"


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------


def test_slack_blocks_shape():
    blocks = build_blocks(_notification())
    types = [b["type"] for b in blocks]
    assert types[0] == "header"
    assert "divider" in types
    assert types[-1] == "context"
    assert any("CS0246" in b.get("text", {}).get("text", "") for b in blocks if b["type"] == "section")


@pytest.mark.asyncio
async def test_slack_send_posts_blocks():
    rec = Recorder(status_code=200)
    async with rec.client() as client:
        await SlackSender(SlackConfig(enabled=True, webhook_url="https://hooks.slack.test/x"), client).send(_notification())
    assert "blocks" in json.loads(rec.requests[0].content)


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


def test_webhook_payload_envelope():
    payload = build_payload(_notification())
    assert payload["event"] == "BuildFailed"
    assert payload["timestamp"] == _WHEN.isoformat()
    assert payload["build"] == {
        "id": str(_BUILD_ID),
        "number": 12,
        "project": "Skyfall",
        "branch": "main",
        "status": "Failed",
        "errorMessage": "CS0246: type not found",
        "durationSeconds": 192.0,
        "sizeBytes": 5 * 1_048_576,
        "triggeredBy": "octocat",
    }


@pytest.mark.asyncio
async def test_webhook_signs_exact_body():
    rec = Recorder(status_code=200)
    async with rec.client() as client:
        sender = WebhookSender(WebhookConfig(enabled=True, url="https://hooks.test/in", secret="s3cret"), client)
        await sender.send(_notification())

    request = rec.requests[0]
    assert request.headers[EVENT_HEADER] == "BuildFailed"
    expected = hmac.new(b"s3cret", request.content, hashlib.sha256).hexdigest()
    assert request.headers[SIGNATURE_HEADER] == f"sha256={expected}"
    assert json.loads(request.content)["build"]["number"] == 12


@pytest.mark.asyncio
async def test_webhook_without_secret_has_no_signature():
    rec = Recorder(status_code=200)
    async with rec.client() as client:
        await WebhookSender(WebhookConfig(enabled=True, url="https://hooks.test/in"), client).send(_notification())
    request = rec.requests[0]
    assert SIGNATURE_HEADER not in request.headers
    assert request.headers[EVENT_HEADER] == "BuildFailed"


@pytest.mark.asyncio
async def test_webhook_unconfigured_send_raises():
    with pytest.raises(DeliveryFailure):
        await WebhookSender(WebhookConfig(enabled=True)).send(_notification())


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


def _email_config(port: int = 587) -> EmailConfig:
    return EmailConfig(
        enabled=True,
        smtp=SmtpSettings(host="smtp.test", port=port, username="bot", password="pw",
                          from_address="bot@example.com"),
        recipients=["ops@example.com", "lead@example.com"],
    )


def test_email_body_lists_details():
    body = build_body(_notification())
    assert body.startswith("Build #12 Failed")
    assert "Duration:     3m 12s" in body
    assert "Size:         5.0 MB" in body
    assert "CS0246" in body


@pytest.mark.asyncio
async def test_email_send_uses_starttls_on_submission_port():
    with patch("app.services.notifications.mail.smtplib.SMTP") as smtp_cls:
        await EmailSender(_email_config()).send(_notification())

    client = smtp_cls.return_value
    smtp_cls.assert_called_once()
    client.starttls.assert_called_once()
    client.login.assert_called_once_with("bot", "pw")
    message = client.send_message.call_args.args[0]
    assert message["Subject"] == "[Skyfall] Build #12 Failed"
    assert message["To"] == "ops@example.com, lead@example.com"


@pytest.mark.asyncio
async def test_email_send_uses_implicit_tls_on_465():
    with patch("app.services.notifications.mail.smtplib.SMTP_SSL") as ssl_cls, \
         patch("app.services.notifications.mail.smtplib.SMTP") as plain_cls:
        await EmailSender(_email_config(port=465)).send(_notification())
    ssl_cls.assert_called_once()
    plain_cls.assert_not_called()


@pytest.mark.asyncio
async def test_email_smtp_error_becomes_delivery_failure():
    import smtplib

    with patch("app.services.notifications.mail.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad")
        with pytest.raises(DeliveryFailure) as exc_info:
            await EmailSender(_email_config()).send(_notification())
    assert exc_info.value.channel == "Email"
