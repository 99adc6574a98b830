"""Notification fan-out -- Discord, Slack, generic Webhook and Email channels.

Sub-modules:
    config      — channel settings models, project override resolution
    message     — BuildNotification record and shared formatting helpers
    base        — sender base classes
    discord / slack / webhook / mail — channel payload shaping and delivery
    dispatcher  — resolve → filter (enabled + subscribed) → send → log
"""

from app.services.notifications.dispatcher import send_notification, test_channel
from app.services.notifications.message import BuildNotification, create_from_build

__all__ = [
    "BuildNotification",
    "create_from_build",
    "send_notification",
    "test_channel",
]
