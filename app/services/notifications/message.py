"""The per-event notification record and the text helpers senders share."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from app.models import BuildStatus, NotificationEvent

_KB = 1024
_MB = 1_048_576
_GB = 1_073_741_824

# (title verb / label, emoji, discord colour)
EVENT_STYLE: dict[NotificationEvent, tuple[str, str, int]] = {
    NotificationEvent.BUILD_STARTED: ("Started", "\U0001F680", 3447003),
    NotificationEvent.BUILD_COMPLETED: ("Completed", "✅", 3066993),
    NotificationEvent.BUILD_FAILED: ("Failed", "❌", 15158332),
    NotificationEvent.BUILD_CANCELLED: ("Cancelled", "⚪", 9807270),
    NotificationEvent.UPLOAD_COMPLETED: ("Upload Completed", "☁️", 3066993),
    NotificationEvent.UPLOAD_FAILED: ("Upload Failed", "❌", 15158332),
}


@dataclass(frozen=True)
class BuildNotification:
    """Everything a channel needs to describe one lifecycle event."""

    event: NotificationEvent
    build_id: UUID
    build_number: int
    project_name: str
    branch: str
    status: BuildStatus
    error_message: str | None = None
    duration: timedelta | None = None
    build_size: int | None = None
    triggered_by: str | None = None
    timestamp: datetime | None = None
    project_settings_json: str | None = None

    @property
    def sent_at(self) -> datetime:
        return self.timestamp or datetime.now(timezone.utc)


def create_from_build(
    build: dict[str, Any],
    event: NotificationEvent,
    *,
    now: datetime | None = None,
) -> BuildNotification:
    """Build a notification from a joined build row (see build_repo)."""
    now = now or datetime.now(timezone.utc)
    started = build.get("started_at")
    completed = build.get("completed_at")
    duration = None
    if started and completed:
        duration = completed - started
    elif started:
        duration = now - started

    return BuildNotification(
        event=event,
        build_id=build["id"],
        build_number=build["build_number"],
        project_name=build.get("project_name") or "",
        branch=build.get("branch") or "",
        status=BuildStatus(build["status"]),
        error_message=build.get("error_message"),
        duration=duration,
        build_size=build.get("build_size"),
        triggered_by=build.get("triggered_by_username"),
        timestamp=now,
        project_settings_json=build.get("notification_settings_json"),
    )


def format_duration(duration: timedelta) -> str:
    """``"3m 12s"`` for a minute or more, else ``"42s"``."""
    total = int(duration.total_seconds())
    minutes, seconds = divmod(total, 60)
    if minutes >= 1:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_size(size: int) -> str:
    if size >= _GB:
        return f"{size / _GB:.2f} GB"
    if size >= _MB:
        return f"{size / _MB:.1f} MB"
    return f"{size / _KB:.0f} KB"


def headline(notification: BuildNotification) -> str:
    """One-line summary, e.g. ``"Build #12 Failed"``."""
    label = EVENT_STYLE.get(notification.event, (notification.status.value, "", 0))[0]
    if notification.event in (NotificationEvent.UPLOAD_COMPLETED, NotificationEvent.UPLOAD_FAILED):
        return f"{label} - Build #{notification.build_number}"
    return f"Build #{notification.build_number} {label}"
