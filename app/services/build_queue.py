"""Build queue & state service -- the build lifecycle and job dispatch.

Owns three things:

* the FIFO of queued build ids and the single consumer task that turns
  each one into a ``BuildQueued`` announcement for workers,
* the (advisory) status state machine driven by worker callbacks,
* scheduling notification delivery for lifecycle boundaries.

Every mutation is a load-mutate-persist round trip with no concurrency
token; concurrent callbacks for the same build are last-write-wins.
Broadcasts happen after the write and are not transactional with it.

No SQL, no HTTP framework.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import UUID

from app.config import settings
from app.errors import BadRequestError, NotFoundError, PersistenceFailure
from app.models import BuildStage, BuildStatus, LogLevel, NotificationEvent, ScriptingBackend
from app.repos import build_repo, project_repo
from app.services import pipeline_service
from app.services.notifications import dispatcher
from app.services.notifications.message import BuildNotification, create_from_build
from app.ws_manager import AGENT_GROUP, ConnectionManager, build_group, manager

logger = logging.getLogger(__name__)

# Statuses from which an operator may still cancel a build
CANCELLABLE_STATUSES = frozenset({
    BuildStatus.QUEUED,
    BuildStatus.CLONING,
    BuildStatus.BUILDING,
})

Notifier = Callable[[BuildNotification], Awaitable[Any]]


def notification_event_for(
    previous: BuildStatus,
    new: BuildStatus,
) -> NotificationEvent | None:
    """Map a status transition to the notification it fires, if any.

    Only job boundaries notify; the previous status matters only for the
    start event.
    """
    if new is BuildStatus.CLONING and previous is BuildStatus.QUEUED:
        return NotificationEvent.BUILD_STARTED
    if new is BuildStatus.SUCCESS:
        return NotificationEvent.BUILD_COMPLETED
    if new is BuildStatus.FAILED:
        return NotificationEvent.BUILD_FAILED
    if new is BuildStatus.CANCELLED:
        return NotificationEvent.BUILD_CANCELLED
    return None


def _log_view(row: dict) -> dict:
    return {
        "id": str(row["id"]),
        "timestamp": row["timestamp"],
        "level": row["level"],
        "message": row["message"],
        "stage": row["stage"],
    }


def build_view(build: dict) -> dict:
    """Public representation of a build row (HTTP responses)."""
    return {
        "id": str(build["id"]),
        "project_id": str(build["project_id"]),
        "project_name": build.get("project_name"),
        "build_number": build["build_number"],
        "branch": build["branch"],
        "commit_hash": build.get("commit_hash"),
        "scripting_backend": build["scripting_backend"],
        "build_target": build.get("build_target"),
        "status": build["status"],
        "started_at": build.get("started_at"),
        "completed_at": build.get("completed_at"),
        "output_path": build.get("output_path"),
        "build_size": build.get("build_size"),
        "deploy_branch": build.get("deploy_branch"),
        "deploy_status": build.get("deploy_status"),
        "error_message": build.get("error_message"),
        "triggered_by": build.get("triggered_by_username"),
        "created_at": build.get("created_at"),
    }


class BuildQueueService:
    """Single-consumer build dispatcher and status state machine."""

    def __init__(
        self,
        hub: ConnectionManager | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._hub = hub or manager
        self._notifier = notifier or dispatcher.send_notification
        self._queue: asyncio.Queue[UUID] = asyncio.Queue()
        self._consumer_task: asyncio.Task | None = None
        self._background_tasks: set[asyncio.Task] = set()

    # ── lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start the consumer task (call from lifespan startup)."""
        if self._consumer_task is None:
            self._consumer_task = asyncio.create_task(self._consume())
            logger.info("Build queue consumer started")

    async def stop(self) -> None:
        """Cancel the consumer and any in-flight notification tasks."""
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None

        for task in list(self._background_tasks):
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        logger.info("Build queue consumer stopped")

    def pending(self) -> int:
        """Number of build ids waiting for dispatch."""
        return self._queue.qsize()

    def _track_task(self, task: asyncio.Task) -> asyncio.Task:
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    # ── queue ─────────────────────────────────────────────────

    async def create_build(
        self,
        project_id: UUID,
        *,
        branch: str | None = None,
        scripting_backend: ScriptingBackend = ScriptingBackend.IL2CPP,
        deploy_branch: str | None = None,
        triggered_by_id: UUID | None = None,
    ) -> dict:
        """Persist a new ``Queued`` build and enqueue it for dispatch.

        The build number is ``max + 1`` for the project.  Two concurrent
        creates can compute the same number; the unique index rejects one.
        """
        project = await project_repo.get_project_by_id(project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")

        build_number = await build_repo.get_next_build_number(project_id)
        build = await build_repo.create_build(
            project_id,
            build_number,
            branch=branch or project["default_branch"],
            scripting_backend=ScriptingBackend(scripting_backend).value,
            deploy_branch=deploy_branch,
            triggered_by_id=triggered_by_id,
        )
        self.enqueue_build(build["id"])
        build["project_name"] = project["name"]
        return build

    def enqueue_build(self, build_id: UUID) -> None:
        """Append to the dispatch FIFO. Never blocks."""
        self._queue.put_nowait(build_id)
        logger.info("Build %s queued", build_id)

    async def _consume(self) -> None:
        while True:
            build_id = await self._queue.get()
            try:
                await self._dispatch(build_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error processing build %s", build_id)
            finally:
                self._queue.task_done()

    async def _dispatch(self, build_id: UUID) -> None:
        """Announce one queued build to workers."""
        build = await build_repo.get_build_by_id(build_id)
        if build is None:
            logger.warning("Build %s not found", build_id)
            return

        logger.info(
            "Processing build %s for project %s", build_id, build["project_name"],
        )
        agents = self._hub.group_size(AGENT_GROUP)
        if agents > 1:
            logger.warning(
                "%d agents registered; build %s will be announced to all of them",
                agents, build_id,
            )

        pipeline = await pipeline_service.resolve_pipeline_for_project(build["project_id"])
        await self._hub.send_all("BuildQueued", {
            "buildId": str(build["id"]),
            "projectId": str(build["project_id"]),
            "projectName": build["project_name"],
            "buildNumber": build["build_number"],
            "branch": build["branch"],
            "scriptingBackend": build["scripting_backend"],
            "engineVersion": build.get("engine_version"),
            "buildPath": build.get("build_path"),
            "gitUrl": build.get("git_url"),
            "deployBranch": build.get("deploy_branch"),
            "uploadRequested": bool(build.get("deploy_branch")),
            "pipelineId": str(pipeline["id"]) if pipeline else None,
        })

    # ── state machine ─────────────────────────────────────────

    async def update_status(
        self,
        build_id: UUID,
        status: BuildStatus,
        error_message: str | None = None,
    ) -> dict:
        """Apply a status report.

        Any (previous, new) pair is accepted.  ``started_at`` is set on the
        first ``Building``; ``completed_at`` on every terminal status.
        Returns the updated build.  Raises NotFoundError for an unknown
        build and PersistenceFailure when the store cannot be read or
        written; nothing is broadcast or notified in either case.
        """
        status = BuildStatus(status)
        try:
            build = await build_repo.get_build_by_id(build_id)
        except Exception as exc:
            logger.exception("Failed to load build %s for status update", build_id)
            raise PersistenceFailure(f"Could not load build {build_id}") from exc
        if build is None:
            raise NotFoundError(f"Build {build_id} not found")

        previous = BuildStatus(build["status"])
        now = datetime.now(timezone.utc)
        build["status"] = status.value
        if error_message is not None:
            build["error_message"] = error_message
        if status is BuildStatus.BUILDING and build.get("started_at") is None:
            build["started_at"] = now
        if status.is_terminal:
            build["completed_at"] = now

        try:
            await build_repo.save_build_state(
                build_id,
                status=build["status"],
                error_message=build.get("error_message"),
                started_at=build.get("started_at"),
                completed_at=build.get("completed_at"),
            )
        except Exception as exc:
            logger.exception("Failed to persist status %s for build %s", status.value, build_id)
            raise PersistenceFailure(f"Could not save status for build {build_id}") from exc

        await self._hub.send_all("BuildStatusUpdated", {
            "buildId": str(build_id),
            "status": status.value,
            "errorMessage": error_message,
        })

        event = notification_event_for(previous, status)
        if event is not None:
            self._schedule_notification(build, event)
        return build

    async def add_log(
        self,
        build_id: UUID,
        level: LogLevel,
        message: str,
        stage: BuildStage,
    ) -> dict:
        """Store one log line and stream it to the build's viewers."""
        try:
            row = await build_repo.append_build_log(
                build_id, LogLevel(level).value, message, BuildStage(stage).value,
            )
        except Exception as exc:
            logger.exception("Failed to append log for build %s", build_id)
            raise PersistenceFailure(f"Could not store log for build {build_id}") from exc

        await self._hub.send_group(build_group(build_id), "BuildLogAdded", {
            "buildId": str(build_id),
            "log": _log_view(row),
        })
        return row

    async def update_commit_hash(self, build_id: UUID, commit_hash: str | None) -> None:
        try:
            found = await build_repo.update_commit_hash(build_id, commit_hash)
        except Exception as exc:
            logger.exception("Failed to store commit hash for build %s", build_id)
            raise PersistenceFailure(f"Could not store commit hash for build {build_id}") from exc
        if not found:
            raise NotFoundError(f"Build {build_id} not found")

        await self._hub.send_all("BuildCommitHashUpdated", {
            "buildId": str(build_id),
            "commitHash": commit_hash,
        })

    async def record_completion(
        self,
        build_id: UUID,
        success: bool,
        output_path: str | None = None,
        build_size: int | None = None,
    ) -> None:
        """Worker finished: store artifact info, finalize status, announce.

        ``BuildCompleted`` goes out only after the final status is stored.
        """
        if output_path is not None or build_size is not None:
            try:
                await build_repo.update_build_output(build_id, output_path, build_size)
            except Exception as exc:
                logger.exception("Failed to store output for build %s", build_id)
                raise PersistenceFailure(f"Could not store output for build {build_id}") from exc

        await self.update_status(
            build_id, BuildStatus.SUCCESS if success else BuildStatus.FAILED,
        )
        await self._hub.send_all("BuildCompleted", {
            "buildId": str(build_id),
            "success": success,
            "outputPath": output_path,
            "buildSize": build_size,
        })

    async def report_upload(
        self,
        build_id: UUID,
        success: bool,
        deploy_status: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Record the deployment outcome and fire the upload notification."""
        deploy_status = deploy_status or ("Completed" if success else "Failed")
        try:
            await build_repo.update_deploy_status(build_id, deploy_status, error_message)
            build = await build_repo.get_build_by_id(build_id)
        except Exception as exc:
            logger.exception("Failed to store upload result for build %s", build_id)
            raise PersistenceFailure(f"Could not store upload result for build {build_id}") from exc
        if build is None:
            raise NotFoundError(f"Build {build_id} not found")

        await self._hub.send_all("BuildUploadStatusUpdated", {
            "buildId": str(build_id),
            "success": success,
            "deployStatus": deploy_status,
            "errorMessage": error_message,
        })
        event = NotificationEvent.UPLOAD_COMPLETED if success else NotificationEvent.UPLOAD_FAILED
        self._schedule_notification(build, event)

    async def cancel_build(self, build_id: UUID) -> dict:
        """Operator cancel. Workers observe it via ``BuildStatusUpdated``."""
        build = await build_repo.get_build_by_id(build_id)
        if build is None:
            raise NotFoundError(f"Build {build_id} not found")
        if BuildStatus(build["status"]) not in CANCELLABLE_STATUSES:
            raise BadRequestError("Build cannot be cancelled in its current state")
        return await self.update_status(build_id, BuildStatus.CANCELLED)

    # ── reads ─────────────────────────────────────────────────

    async def get_build(self, build_id: UUID) -> dict:
        build = await build_repo.get_build_by_id(build_id)
        if build is None:
            raise NotFoundError(f"Build {build_id} not found")
        return build

    async def list_builds(
        self,
        project_id: UUID | None = None,
        *,
        page: int = 1,
        page_size: int | None = None,
    ) -> tuple[list[dict], int]:
        page_size = page_size or settings.DEFAULT_PAGE_SIZE
        page = max(page, 1)
        return await build_repo.list_builds(
            project_id, limit=page_size, offset=(page - 1) * page_size,
        )

    async def get_build_logs(self, build_id: UUID, after: int | None = None) -> list[dict]:
        """Logs in chronological order, optionally skipping the first *after*."""
        logs = await build_repo.get_build_logs(build_id)
        if after:
            logs = logs[after:]
        return [_log_view(row) for row in logs]

    # ── notifications ─────────────────────────────────────────

    def _schedule_notification(self, build: dict, event: NotificationEvent) -> None:
        """Hand the event to the dispatcher as a detached task."""
        try:
            notification = create_from_build(build, event)
        except Exception:
            logger.exception("Failed to build %s notification for build %s", event.value, build.get("id"))
            return
        self._track_task(asyncio.create_task(self._notify(notification)))

    async def _notify(self, notification: BuildNotification) -> None:
        try:
            await self._notifier(notification)
        except Exception:
            logger.exception("Failed to send notification for build %s", notification.build_id)


build_queue = BuildQueueService()
