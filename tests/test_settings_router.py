"""Tests for the notification settings and worker-plan routers."""

from unittest.mock import AsyncMock, patch

import pytest

from app.errors import NotFoundError
from app.models import NotificationChannel
from app.services.notifications.config import NotificationConfig
from tests.conftest import AGENT_KEY, MOCK_USER, PIPELINE_ID, auth_header


@pytest.fixture
def client(test_client):
    return test_client


# ---------------------------------------------------------------------------
# /settings/notifications
# ---------------------------------------------------------------------------


@patch("app.api.routers.notifications.dispatcher.get_config", new_callable=AsyncMock)
@patch("app.api.deps.get_user_by_id", new_callable=AsyncMock)
def test_get_notification_settings(mock_get_user, mock_get_config, client):
    mock_get_user.return_value = MOCK_USER
    mock_get_config.return_value = NotificationConfig.model_validate({
        "slack": {"enabled": True, "webhookUrl": "https://slack.test/h", "events": ["BuildFailed"]},
    })

    resp = client.get("/settings/notifications", headers=auth_header())

    assert resp.status_code == 200
    data = resp.json()
    assert data["slack"]["webhookUrl"] == "https://slack.test/h"
    assert data["slack"]["events"] == ["BuildFailed"]
    assert data["discord"]["enabled"] is False


@patch("app.api.routers.notifications.dispatcher.save_config", new_callable=AsyncMock)
@patch("app.api.deps.get_user_by_id", new_callable=AsyncMock)
def test_put_notification_settings(mock_get_user, mock_save, client):
    mock_get_user.return_value = MOCK_USER
    body = {"webhook": {"enabled": True, "url": "https://hook.test/in", "events": ["UploadFailed"]}}

    resp = client.put("/settings/notifications", json=body, headers=auth_header())

    assert resp.status_code == 200
    saved = mock_save.call_args.args[0]
    assert saved.webhook.url == "https://hook.test/in"
    assert resp.json()["webhook"]["events"] == ["UploadFailed"]


@patch("app.api.deps.get_user_by_id", new_callable=AsyncMock)
def test_put_rejects_unknown_event(mock_get_user, client):
    mock_get_user.return_value = MOCK_USER
    body = {"discord": {"enabled": True, "events": ["BuildExploded"]}}

    resp = client.put("/settings/notifications", json=body, headers=auth_header())

    assert resp.status_code == 422


def test_notification_settings_require_auth(client):
    assert client.get("/settings/notifications").status_code == 401


@patch("app.api.routers.notifications.dispatcher.test_channel", new_callable=AsyncMock)
@patch("app.api.deps.get_user_by_id", new_callable=AsyncMock)
def test_send_test_notification(mock_get_user, mock_test, client):
    mock_get_user.return_value = MOCK_USER
    mock_test.return_value = (True, "Test notification sent")

    resp = client.post("/settings/notifications/test/Discord", headers=auth_header())

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Test notification sent"}
    mock_test.assert_awaited_once_with(NotificationChannel.DISCORD)


@patch("app.api.deps.get_user_by_id", new_callable=AsyncMock)
def test_send_test_notification_unknown_channel(mock_get_user, client):
    mock_get_user.return_value = MOCK_USER
    resp = client.post("/settings/notifications/test/Fax", headers=auth_header())
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# /pipelines/{id}/worker-plan
# ---------------------------------------------------------------------------


_PLAN = {"pipelineId": str(PIPELINE_ID), "name": "Release", "preBuild": [], "postBuild": []}


@patch("app.api.routers.pipelines.pipeline_service.get_worker_pipeline", new_callable=AsyncMock)
def test_worker_plan_with_agent_key(mock_plan, client):
    mock_plan.return_value = _PLAN

    resp = client.get(f"/pipelines/{PIPELINE_ID}/worker-plan", headers={"X-Agent-Key": AGENT_KEY})

    assert resp.status_code == 200
    assert resp.json() == _PLAN
    mock_plan.assert_awaited_once_with(PIPELINE_ID)


@patch("app.api.routers.pipelines.pipeline_service.get_worker_pipeline", new_callable=AsyncMock)
@patch("app.api.deps.get_user_by_id", new_callable=AsyncMock)
def test_worker_plan_with_user_token(mock_get_user, mock_plan, client):
    mock_get_user.return_value = MOCK_USER
    mock_plan.return_value = _PLAN

    resp = client.get(f"/pipelines/{PIPELINE_ID}/worker-plan", headers=auth_header())

    assert resp.status_code == 200


def test_worker_plan_rejects_bad_agent_key(client):
    resp = client.get(f"/pipelines/{PIPELINE_ID}/worker-plan", headers={"X-Agent-Key": "nope"})
    assert resp.status_code == 401


@patch("app.api.routers.pipelines.pipeline_service.get_worker_pipeline", new_callable=AsyncMock)
def test_worker_plan_missing_pipeline(mock_plan, client):
    mock_plan.side_effect = NotFoundError("Pipeline not found")

    resp = client.get(f"/pipelines/{PIPELINE_ID}/worker-plan", headers={"X-Agent-Key": AGENT_KEY})

    assert resp.status_code == 404
