"""Notification channel configuration and per-project override resolution.

Global settings are stored as one JSON blob under the ``notifications``
settings key; each project may carry an override blob.  Both are parsed
at the point of use and fall back to defaults when unparsable.
"""

from __future__ import annotations

import json
import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.models import NotificationEvent

logger = logging.getLogger(__name__)


class _ChannelConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: bool = False
    events: list[NotificationEvent] = Field(default_factory=list)

    @property
    def is_configured(self) -> bool:
        return self.enabled

    def wants(self, event: NotificationEvent) -> bool:
        """True when the channel is configured and subscribed to *event*."""
        return self.is_configured and event in self.events


class DiscordConfig(_ChannelConfig):
    webhook_url: str | None = Field(default=None, alias="webhookUrl")

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.webhook_url)


class SlackConfig(_ChannelConfig):
    webhook_url: str | None = Field(default=None, alias="webhookUrl")

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.webhook_url)


class WebhookConfig(_ChannelConfig):
    url: str | None = None
    secret: str | None = None

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.url)


class SmtpSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    host: str | None = None
    port: int = 587
    username: str | None = None
    password: str | None = None
    use_ssl: bool = Field(default=True, alias="useSsl")
    from_address: str | None = Field(default=None, alias="fromAddress")
    from_name: str | None = Field(default="Build Automation", alias="fromName")

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.username and self.password)


class EmailConfig(_ChannelConfig):
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    recipients: list[str] = Field(default_factory=list)

    @property
    def is_configured(self) -> bool:
        return self.enabled and self.smtp.is_configured and bool(self.recipients)


class NotificationConfig(BaseModel):
    """Global notification settings, one block per channel."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)


class ProjectNotificationConfig(BaseModel):
    """Per-project override. Channel blocks are optional."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    use_global_settings: bool = Field(default=True, alias="useGlobalSettings")
    discord: DiscordConfig | None = None
    slack: SlackConfig | None = None
    email: EmailConfig | None = None
    webhook: WebhookConfig | None = None


def parse_global_config(raw: str | None) -> NotificationConfig:
    """Parse the global settings blob; defaults on empty or invalid input."""
    if not raw:
        return NotificationConfig()
    try:
        return NotificationConfig.model_validate_json(raw)
    except ValidationError:
        logger.exception("Failed to parse global notification config; using defaults")
        return NotificationConfig()


def parse_project_override(raw: str | dict | None) -> ProjectNotificationConfig | None:
    """Parse a project's override blob. Returns None when absent or invalid."""
    if not raw:
        return None
    try:
        if isinstance(raw, dict):
            return ProjectNotificationConfig.model_validate(raw)
        return ProjectNotificationConfig.model_validate(json.loads(raw))
    except (ValueError, ValidationError) as exc:
        logger.warning("Ignoring unparsable project notification override: %s", exc)
        return None


def resolve_config(
    global_config: NotificationConfig,
    project_override: str | dict | None,
) -> NotificationConfig:
    """Pick the effective per-channel configuration for one build.

    The project override applies only when it opts out of global settings;
    even then, a channel the project leaves unset falls back to global.
    """
    override = parse_project_override(project_override)
    if override is None or override.use_global_settings:
        return global_config
    return NotificationConfig(
        discord=override.discord or global_config.discord,
        slack=override.slack or global_config.slack,
        email=override.email or global_config.email,
        webhook=override.webhook or global_config.webhook,
    )
