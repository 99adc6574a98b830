"""Request-ID middleware and the matching log filter.

Every HTTP request gets an ``X-Request-ID`` (reused from the client when
present).  The id is stored on ``request.state`` for the exception
handlers and in a context variable so log lines emitted while the request
is being served can carry it.

Pure ASGI (not BaseHTTPMiddleware) so the ``/hub`` WebSocket is untouched.
"""

import logging
import uuid
from contextvars import ContextVar

from starlette.types import ASGIApp, Message, Receive, Scope, Send

_HEADER = b"x-request-id"
_MAX_ID_LENGTH = 128

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


def _incoming_id(scope: Scope) -> str | None:
    for name, value in scope.get("headers", []):
        if name == _HEADER:
            candidate = value.decode("latin-1").strip()
            if candidate and len(candidate) <= _MAX_ID_LENGTH:
                return candidate
    return None


class RequestIDMiddleware:
    """Assign, expose and echo a request id for each HTTP request."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = _incoming_id(scope) or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id
        token = request_id_var.set(request_id)

        async def send_with_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                headers.append((_HEADER, request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        try:
            await self.app(scope, receive, send_with_id)
        finally:
            request_id_var.reset(token)


class RequestIDLogFilter(logging.Filter):
    """Attach ``record.request_id`` (``-`` outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True
