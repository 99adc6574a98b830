"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Validates required settings on import — fails
fast if critical vars are missing outside of tests.
"""

VERSION = "0.1.0"

import sys

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# ---------------------------------------------------------------------------
# Required var names, checked after instantiation (not during), so tests
# that leave them blank still work.
# ---------------------------------------------------------------------------
_REQUIRED_VARS: list[str] = [
    "DATABASE_URL",
    "JWT_SECRET",
    "AGENT_API_KEY",
]


class Settings(BaseSettings):
    """Application settings — sourced from environment / ``.env`` file.

    Required vars (must be set in production, may be blank in test):
      DATABASE_URL, JWT_SECRET, AGENT_API_KEY
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -- required in production (default empty so tests don't fail) --
    DATABASE_URL: str = ""
    JWT_SECRET: str = ""
    # Shared key build workers present on the hub (?agent_key=...)
    AGENT_API_KEY: str = ""

    # -- optional with sensible defaults --
    FRONTEND_URL: str = "http://localhost:3000"
    APP_URL: str = "http://localhost:8000"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""
    HOST: str = "127.0.0.1"
    PORT: int = Field(default=8000, ge=1, le=65535)

    # Outbound notification delivery (Discord / Slack / Webhook / Email)
    NOTIFICATION_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # Real-time hub
    WS_HEARTBEAT_SECONDS: int = Field(default=30, ge=1)
    WS_MAX_MESSAGE_SIZE: int = 64 * 1024
    WS_SEND_TIMEOUT_SECONDS: float = 5.0

    # HTTP surface
    BUILD_RATE_LIMIT_PER_MINUTE: int = Field(default=30, ge=1)
    DEFAULT_PAGE_SIZE: int = Field(default=20, ge=1, le=200)


settings = Settings()


# Validate at import time, but only when NOT running under pytest.
if "pytest" not in sys.modules:
    _missing = [v for v in _REQUIRED_VARS if not getattr(settings, v)]
    if _missing:
        print(
            f"[config] FATAL: missing required environment variables: "
            f"{', '.join(_missing)}",
            file=sys.stderr,
        )
        sys.exit(1)
