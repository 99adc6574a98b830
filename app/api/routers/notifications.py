"""Notification settings router -- global channel config and test sends."""

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user
from app.models import NotificationChannel
from app.services.notifications import dispatcher
from app.services.notifications.config import NotificationConfig

router = APIRouter(prefix="/settings/notifications", tags=["notifications"])


@router.get("")
async def get_notification_settings(user: dict = Depends(get_current_user)):
    config = await dispatcher.get_config()
    return config.model_dump(by_alias=True)


@router.put("")
async def update_notification_settings(
    body: NotificationConfig,
    user: dict = Depends(get_current_user),
):
    """Replace the global notification settings."""
    await dispatcher.save_config(body)
    return body.model_dump(by_alias=True)


@router.post("/test/{channel}")
async def test_notification_channel(
    channel: NotificationChannel,
    user: dict = Depends(get_current_user),
):
    """Send a test message through one channel."""
    ok, message = await dispatcher.test_channel(channel)
    return {"success": ok, "message": message}
