"""Build hub router -- the bidirectional real-time channel for viewers and workers.

Auth via query param: ``/hub?token=<jwt>`` (viewers) or
``/hub?agent_key=<key>`` (build workers).

Inbound frames are invocations::

    {"invocationId": "7", "target": "UpdateBuildStatus",
     "arguments": ["<build id>", "Building", null]}

An invocation carrying an id is answered with
``{"type": "completion", "invocationId": "7", "ok": true|false}``.
Failures carry no detail; workers retry on their own.

Outbound frames are ``{"type": <event>, "payload": {...}}`` (see ws_manager).
"""

import json
import logging
import uuid
from typing import Any, Awaitable, Callable
from uuid import UUID

import jwt as pyjwt
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.auth import decode_token, verify_agent_key
from app.errors import PersistenceFailure, ValidationFailure
from app.models import BuildStage, BuildStatus, LogLevel
from app.services.build_queue import build_queue
from app.ws_manager import AGENT_GROUP, MAX_MESSAGE_SIZE, build_group, manager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["hub"])

Handler = Callable[..., Awaitable[None]]


# ---------------------------------------------------------------------------
# argument parsing
# ---------------------------------------------------------------------------


def _parse_build_id(value: Any) -> UUID:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationFailure(f"Invalid build id: {value!r}") from None


def _parse_enum(enum_cls, value: Any):  # noqa: ANN001, ANN202
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationFailure(f"Invalid {enum_cls.__name__}: {value!r}") from None


# ---------------------------------------------------------------------------
# RPC handlers -- (connection_id, *arguments)
# ---------------------------------------------------------------------------


async def _join_build_group(connection_id: str, build_id: str) -> None:
    await manager.add_to_group(connection_id, build_group(build_id))
    logger.info("Client %s joined build group %s", connection_id[:8], build_id)


async def _leave_build_group(connection_id: str, build_id: str) -> None:
    await manager.remove_from_group(connection_id, build_group(build_id))


async def _register_agent(connection_id: str, agent_name: str) -> None:
    await manager.add_to_group(connection_id, AGENT_GROUP)
    logger.info("Agent %s registered with connection %s", agent_name, connection_id[:8])
    await manager.send_all("AgentConnected", {"agentName": agent_name}, exclude=connection_id)


async def _update_build_status(
    connection_id: str,
    build_id: str,
    status: str,
    error_message: str | None = None,
) -> None:
    await build_queue.update_status(
        _parse_build_id(build_id), _parse_enum(BuildStatus, status), error_message,
    )


async def _add_build_log(
    connection_id: str,
    build_id: str,
    level: str,
    message: str,
    stage: str,
) -> None:
    await build_queue.add_log(
        _parse_build_id(build_id),
        _parse_enum(LogLevel, level),
        message,
        _parse_enum(BuildStage, stage),
    )


async def _send_build_progress(
    connection_id: str,
    build_id: str,
    stage: str,
    progress: int,
    message: str,
) -> None:
    await manager.send_all("BuildProgress", {
        "buildId": str(_parse_build_id(build_id)),
        "stage": stage,
        "progress": progress,
        "message": message,
    })


async def _build_completed(
    connection_id: str,
    build_id: str,
    success: bool,
    output_path: str | None = None,
    build_size: int | None = None,
) -> None:
    await build_queue.record_completion(
        _parse_build_id(build_id), bool(success), output_path, build_size,
    )


async def _update_commit_hash(
    connection_id: str,
    build_id: str,
    commit_hash: str | None = None,
) -> None:
    await build_queue.update_commit_hash(_parse_build_id(build_id), commit_hash)


async def _update_upload_status(
    connection_id: str,
    build_id: str,
    success: bool,
    deploy_status: str | None = None,
    error_message: str | None = None,
) -> None:
    await build_queue.report_upload(
        _parse_build_id(build_id), bool(success), deploy_status, error_message,
    )


HANDLERS: dict[str, Handler] = {
    "JoinBuildGroup": _join_build_group,
    "LeaveBuildGroup": _leave_build_group,
    "RegisterAgent": _register_agent,
    "UpdateBuildStatus": _update_build_status,
    "AddBuildLog": _add_build_log,
    "SendBuildProgress": _send_build_progress,
    "BuildCompleted": _build_completed,
    "UpdateBuildCommitHash": _update_commit_hash,
    "UpdateUploadStatus": _update_upload_status,
}


async def invoke(connection_id: str, target: str, arguments: list) -> bool:
    """Run one RPC. Returns False on any failure (details are only logged)."""
    handler = HANDLERS.get(target)
    if handler is None:
        logger.warning("Unknown hub target %r from %s", target, connection_id[:8])
        return False
    try:
        await handler(connection_id, *arguments)
    except ValidationFailure as exc:
        # Malformed enum text from a worker: ignored, no state change.
        logger.warning("Ignoring %s from %s: %s", target, connection_id[:8], exc)
    except PersistenceFailure as exc:
        logger.warning("%s from %s not stored: %s", target, connection_id[:8], exc)
        return False
    except TypeError:
        logger.warning("Bad arguments for %s from %s", target, connection_id[:8])
        return False
    except Exception:
        logger.exception("Hub invocation %s failed for %s", target, connection_id[:8])
        return False
    return True


# ---------------------------------------------------------------------------
# endpoint
# ---------------------------------------------------------------------------


def _authenticate(websocket: WebSocket) -> str | None:
    """Return a short label for the caller, or None when unauthenticated."""
    agent_key = websocket.query_params.get("agent_key")
    if agent_key:
        return "agent" if verify_agent_key(agent_key) else None

    token = websocket.query_params.get("token")
    if not token:
        return None
    try:
        payload = decode_token(token)
    except pyjwt.PyJWTError:
        return None
    user_id = payload.get("sub")
    return f"user:{user_id[:8]}" if user_id else None


async def _handle_frame(websocket: WebSocket, connection_id: str, data: str) -> None:
    try:
        frame = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Discarding non-JSON frame from %s", connection_id[:8])
        return
    if not isinstance(frame, dict):
        return

    invocation_id = frame.get("invocationId")
    arguments = frame.get("arguments") or []
    if not isinstance(arguments, list):
        arguments = [arguments]

    ok = await invoke(connection_id, str(frame.get("target", "")), arguments)
    if invocation_id is not None:
        await websocket.send_text(json.dumps({
            "type": "completion",
            "invocationId": invocation_id,
            "ok": ok,
        }))


@router.websocket("/hub")
async def hub_endpoint(websocket: WebSocket) -> None:
    """Real-time build hub.

    Connect/disconnect are logged only; a disconnected worker leaves its
    build in the last reported status.
    """
    caller = _authenticate(websocket)
    if caller is None:
        await websocket.close(code=4001, reason="Invalid credentials")
        return

    connection_id = uuid.uuid4().hex
    await websocket.accept()
    await manager.connect(connection_id, websocket)
    logger.info("Client connected: %s (%s) conns=%d", connection_id[:8], caller, manager.connection_count())

    try:
        while True:
            data = await websocket.receive_text()
            if len(data) > MAX_MESSAGE_SIZE:
                await websocket.close(code=1009, reason="Message too large")
                return
            await _handle_frame(websocket, connection_id, data)
    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", connection_id[:8])
    except Exception:
        logger.exception("Hub error for %s", connection_id[:8])
    finally:
        await manager.disconnect(connection_id)
        logger.info("Hub cleaned up %s remaining=%d", connection_id[:8], manager.connection_count())
