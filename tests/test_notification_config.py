"""Tests for notification config parsing and project override resolution."""

import json

import pytest

from app.models import NotificationEvent
from app.services.notifications.config import (
    DiscordConfig,
    EmailConfig,
    NotificationConfig,
    SlackConfig,
    SmtpSettings,
    WebhookConfig,
    parse_global_config,
    parse_project_override,
    resolve_config,
)

_ALL = [e.value for e in NotificationEvent]


def _global() -> NotificationConfig:
    return NotificationConfig(
        discord=DiscordConfig(enabled=True, webhook_url="https://discord.test/hook", events=["BuildCompleted"]),
        slack=SlackConfig(enabled=True, webhook_url="https://hooks.slack.test/x", events=_ALL),
    )


# ---------------------------------------------------------------------------
# parsing
# ---------------------------------------------------------------------------


def test_parse_global_config_camel_case():
    raw = json.dumps({
        "discord": {"enabled": True, "webhookUrl": "https://d", "events": ["BuildFailed"]},
        "email": {
            "enabled": True,
            "smtp": {"host": "smtp.test", "port": 465, "username": "u", "password": "p", "useSsl": True},
            "recipients": ["ops@example.com"],
            "events": ["BuildFailed"],
        },
    })
    config = parse_global_config(raw)
    assert config.discord.webhook_url == "https://d"
    assert config.discord.events == [NotificationEvent.BUILD_FAILED]
    assert config.email.smtp.port == 465
    assert config.email.is_configured


@pytest.mark.parametrize("raw", [None, "", "not json", '{"discord": {"events": ["Nope"]}}'])
def test_parse_global_config_falls_back_to_defaults(raw):
    config = parse_global_config(raw)
    assert config == NotificationConfig()
    assert not config.discord.enabled


@pytest.mark.parametrize("raw", [None, "", "{broken", "[]"])
def test_parse_project_override_invalid_is_none(raw):
    assert parse_project_override(raw) is None


def test_parse_project_override_dict():
    override = parse_project_override({"useGlobalSettings": False})
    assert override is not None
    assert override.use_global_settings is False
    assert override.discord is None


# ---------------------------------------------------------------------------
# is_configured / wants
# ---------------------------------------------------------------------------


def test_channel_wants_requires_enabled_target_and_event():
    assert DiscordConfig(enabled=True, webhook_url="u", events=["BuildFailed"]).wants(NotificationEvent.BUILD_FAILED)
    assert not DiscordConfig(enabled=True, webhook_url="u", events=["BuildFailed"]).wants(NotificationEvent.BUILD_COMPLETED)
    assert not DiscordConfig(enabled=False, webhook_url="u", events=_ALL).wants(NotificationEvent.BUILD_FAILED)
    assert not DiscordConfig(enabled=True, webhook_url=None, events=_ALL).wants(NotificationEvent.BUILD_FAILED)


def test_webhook_configured_needs_url():
    assert WebhookConfig(enabled=True, url="https://x").is_configured
    assert not WebhookConfig(enabled=True).is_configured


def test_email_configured_needs_smtp_and_recipients():
    smtp = SmtpSettings(host="h", username="u", password="p")
    assert EmailConfig(enabled=True, smtp=smtp, recipients=["a@b.c"]).is_configured
    assert not EmailConfig(enabled=True, smtp=smtp).is_configured
    assert not EmailConfig(enabled=True, smtp=SmtpSettings(host="h"), recipients=["a@b.c"]).is_configured


# ---------------------------------------------------------------------------
# resolve_config
# ---------------------------------------------------------------------------


def test_no_override_uses_global():
    g = _global()
    assert resolve_config(g, None) is g


def test_use_global_true_ignores_project_blocks():
    g = _global()
    raw = json.dumps({"useGlobalSettings": True, "discord": {"enabled": False}})
    assert resolve_config(g, raw) is g


def test_unparsable_override_uses_global():
    g = _global()
    assert resolve_config(g, "{oops") is g


def test_project_disabling_discord_suppresses_it():
    """Global Discord on + subscribed; project opts out with Discord disabled."""
    g = _global()
    raw = json.dumps({"useGlobalSettings": False, "discord": {"enabled": False}})
    resolved = resolve_config(g, raw)
    assert not resolved.discord.wants(NotificationEvent.BUILD_COMPLETED)


def test_project_missing_channel_falls_back_to_global():
    g = _global()
    raw = json.dumps({
        "useGlobalSettings": False,
        "discord": {"enabled": True, "webhookUrl": "https://project/hook", "events": _ALL},
    })
    resolved = resolve_config(g, raw)
    assert resolved.discord.webhook_url == "https://project/hook"
    assert resolved.slack == g.slack
