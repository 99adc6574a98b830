"""Tests for config validation."""

from app.config import VERSION, Settings, settings


def test_settings_has_required_attributes():
    for name in ("DATABASE_URL", "JWT_SECRET", "AGENT_API_KEY"):
        assert hasattr(settings, name)


def test_defaults(monkeypatch):
    for name in ("NOTIFICATION_TIMEOUT_SECONDS", "WS_HEARTBEAT_SECONDS", "DEFAULT_PAGE_SIZE"):
        monkeypatch.delenv(name, raising=False)
    fresh = Settings(_env_file=None)
    assert fresh.NOTIFICATION_TIMEOUT_SECONDS == 10.0
    assert fresh.WS_HEARTBEAT_SECONDS == 30
    assert fresh.DEFAULT_PAGE_SIZE == 20
    assert fresh.LOG_FILE == ""


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("WS_MAX_MESSAGE_SIZE", "1024")
    monkeypatch.setenv("BUILD_RATE_LIMIT_PER_MINUTE", "3")
    fresh = Settings(_env_file=None)
    assert fresh.WS_MAX_MESSAGE_SIZE == 1024
    assert fresh.BUILD_RATE_LIMIT_PER_MINUTE == 3


def test_version_string():
    assert VERSION.count(".") == 2
