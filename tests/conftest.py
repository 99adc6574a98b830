"""Shared test fixtures — reduces boilerplate across test modules.

Provides:
- ``set_test_config`` — autouse fixture that patches common settings
- ``USER_ID`` / ``PROJECT_ID`` / ``BUILD_ID`` / ``MOCK_USER`` — reusable IDs
- ``auth_header`` — helper to generate JWT auth headers
- ``FakeWebSocket`` — in-memory stand-in for a Starlette WebSocket
- ``make_build`` — joined build row as returned by build_repo
"""

import json
from datetime import datetime, timezone
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from app.auth import create_token
from app.main import app


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: tests requiring external services (database, etc.)",
    )


# ---------------------------------------------------------------------------
# Canonical test identifiers
# ---------------------------------------------------------------------------

USER_ID = "22222222-2222-2222-2222-222222222222"
PROJECT_ID = UUID("44444444-4444-4444-4444-444444444444")
BUILD_ID = UUID("55555555-5555-5555-5555-555555555555")
PIPELINE_ID = UUID("66666666-6666-6666-6666-666666666666")
AGENT_KEY = "agent-key-for-unit-tests"

MOCK_USER: dict = {
    "id": UUID(USER_ID),
    "username": "octocat",
    "email": "octocat@example.com",
    "role": "Developer",
}

# ---------------------------------------------------------------------------
# Environment patching
# ---------------------------------------------------------------------------

_SETTINGS_PATCHES: dict[str, object] = {
    "app.config.settings.JWT_SECRET": "test-secret-key-for-unit-tests",
    "app.config.settings.AGENT_API_KEY": AGENT_KEY,
    "app.config.settings.FRONTEND_URL": "http://localhost:5173",
    "app.config.settings.APP_URL": "http://localhost:8000",
}


@pytest.fixture(autouse=True)
def set_test_config(monkeypatch):
    """Patch common application settings for a safe test environment.

    ``autouse=True`` so every test gets a deterministic configuration.
    """
    for target, value in _SETTINGS_PATCHES.items():
        monkeypatch.setattr(target, value)


@pytest.fixture(autouse=True)
def _reset_build_limiter():
    from app.api.rate_limit import build_limiter
    build_limiter.reset()
    yield
    build_limiter.reset()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def auth_header(user_id: str = USER_ID, username: str = "octocat") -> dict:
    """Return an ``Authorization`` header dict with a valid JWT."""
    token = create_token(user_id, username)
    return {"Authorization": f"Bearer {token}"}


def make_build(**overrides) -> dict:
    """A build row joined with project/user fields (see build_repo)."""
    row = {
        "id": BUILD_ID,
        "project_id": PROJECT_ID,
        "build_number": 1,
        "branch": "main",
        "commit_hash": None,
        "scripting_backend": "IL2CPP",
        "build_target": "StandaloneWindows64",
        "status": "Queued",
        "started_at": None,
        "completed_at": None,
        "output_path": None,
        "build_size": None,
        "deploy_branch": None,
        "deploy_status": None,
        "error_message": None,
        "triggered_by_id": UUID(USER_ID),
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "project_name": "Skyfall",
        "git_url": "https://git.example.com/skyfall.git",
        "build_path": "Builds/Win64",
        "engine_version": "2022.3.10f1",
        "notification_settings_json": None,
        "triggered_by_username": "octocat",
    }
    row.update(overrides)
    return row


class FakeWebSocket:
    """Records frames sent through ``send_text``."""

    def __init__(self, fail: bool = False):
        self.messages: list[str] = []
        self.fail = fail

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("WebSocket closed")
        self.messages.append(text)

    def frames(self) -> list[dict]:
        return [json.loads(m) for m in self.messages]

    def events(self) -> list[str]:
        return [f["type"] for f in self.frames()]


@pytest.fixture
def test_client() -> TestClient:
    """A fresh ``TestClient`` instance wrapping the FastAPI app."""
    return TestClient(app)
