"""WebSocket connection manager -- group-addressed real-time build events.

Every hub connection (dashboard viewer, CLI or build worker) is tracked by
a server-generated connection id.  Connections can be members of any
number of named groups:

* ``build-{id}``  -- viewers following one build's log stream
* ``agents``      -- workers that called ``RegisterAgent``

Outbound frames are ``{"type": <event>, "payload": {...}}``.  Sends are
best-effort: a connection that fails or times out is dropped, logged,
and never retried.  Nothing here touches build state.
"""

import asyncio
import json
import logging
from typing import Any, Iterable

from app.config import settings
from app.errors import TransportFailure

logger = logging.getLogger(__name__)

AGENT_GROUP = "agents"

# Heartbeat interval (seconds): ping all connections periodically
HEARTBEAT_INTERVAL = settings.WS_HEARTBEAT_SECONDS

# Maximum inbound message size (bytes)
MAX_MESSAGE_SIZE = settings.WS_MAX_MESSAGE_SIZE


def build_group(build_id: Any) -> str:
    """Return the group name for a build's viewers."""
    return f"build-{build_id}"


class ConnectionManager:
    """Tracks hub connections and their group memberships."""

    def __init__(self, send_timeout: float | None = None) -> None:
        self._connections: dict[str, Any] = {}  # connection_id -> websocket
        self._groups: dict[str, set[str]] = {}  # group -> connection_ids
        self._lock = asyncio.Lock()
        self._heartbeat_task: asyncio.Task | None = None
        self._send_timeout = send_timeout or settings.WS_SEND_TIMEOUT_SECONDS

    # ── lifecycle ─────────────────────────────────────────────

    async def start_heartbeat(self) -> None:
        """Start the background heartbeat loop (call from lifespan startup)."""
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    async def stop_heartbeat(self) -> None:
        """Cancel the heartbeat task (call from lifespan shutdown)."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None

    # ── connection management ─────────────────────────────────

    async def connect(self, connection_id: str, websocket) -> None:  # noqa: ANN001
        """Register an accepted WebSocket under *connection_id*."""
        async with self._lock:
            self._connections[connection_id] = websocket

    async def disconnect(self, connection_id: str) -> None:
        """Forget a connection and remove it from every group."""
        async with self._lock:
            self._drop_locked(connection_id)

    def connection_count(self) -> int:
        """Return the number of live connections (lock-free)."""
        return len(self._connections)

    def group_size(self, group: str) -> int:
        """Return the number of connections in *group* (lock-free)."""
        return len(self._groups.get(group, ()))

    async def add_to_group(self, connection_id: str, group: str) -> None:
        async with self._lock:
            if connection_id in self._connections:
                self._groups.setdefault(group, set()).add(connection_id)

    async def remove_from_group(self, connection_id: str, group: str) -> None:
        async with self._lock:
            members = self._groups.get(group)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    self._groups.pop(group, None)

    def _drop_locked(self, connection_id: str) -> None:
        self._connections.pop(connection_id, None)
        for group in [g for g, members in self._groups.items() if connection_id in members]:
            members = self._groups[group]
            members.discard(connection_id)
            if not members:
                self._groups.pop(group, None)

    # ── broadcast ─────────────────────────────────────────────

    async def send_all(
        self,
        event: str,
        payload: Any,
        *,
        exclude: str | None = None,
    ) -> int:
        """Send *event* to every connection (optionally except one).

        Returns the number of connections the frame was delivered to.
        """
        async with self._lock:
            targets = [cid for cid in self._connections if cid != exclude]
        return await self._send_many(targets, event, payload)

    async def send_group(self, group: str, event: str, payload: Any) -> int:
        """Send *event* to every member of *group*."""
        async with self._lock:
            targets = list(self._groups.get(group, ()))
        return await self._send_many(targets, event, payload)

    async def _send_many(self, connection_ids: Iterable[str], event: str, payload: Any) -> int:
        message = json.dumps({"type": event, "payload": payload}, default=str)
        async with self._lock:
            pairs = [
                (cid, self._connections[cid])
                for cid in connection_ids
                if cid in self._connections
            ]
        if not pairs:
            return 0

        results = await asyncio.gather(
            *(self._send_one(ws, message) for _, ws in pairs),
            return_exceptions=True,
        )
        dead = []
        for (cid, _), result in zip(pairs, results):
            if isinstance(result, BaseException):
                logger.warning("Dropping connection %s after %s send failure: %s", cid[:8], event, result)
                dead.append(cid)
        if dead:
            async with self._lock:
                for cid in dead:
                    self._drop_locked(cid)
        return len(pairs) - len(dead)

    async def _send_one(self, websocket, message: str) -> None:  # noqa: ANN001
        try:
            await asyncio.wait_for(websocket.send_text(message), timeout=self._send_timeout)
        except Exception as exc:
            raise TransportFailure(str(exc) or type(exc).__name__) from exc

    # ── heartbeat ─────────────────────────────────────────────

    async def _heartbeat_loop(self) -> None:
        """Ping every connection periodically and prune dead ones."""
        while True:
            await asyncio.sleep(HEARTBEAT_INTERVAL)
            try:
                await self._ping_all()
            except Exception:
                logger.exception("Heartbeat sweep error")

    async def _ping_all(self) -> None:
        """Send a ping frame to every connection; remove dead ones."""
        async with self._lock:
            targets = list(self._connections)
        await self._send_many(targets, "ping", None)


manager = ConnectionManager()
