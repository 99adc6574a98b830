"""Tests for RequestIDMiddleware and RequestIDLogFilter."""

import logging
import uuid

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.middleware import RequestIDLogFilter, RequestIDMiddleware, request_id_var


def _app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestIDMiddleware)

    @app.get("/echo")
    async def _echo():
        return {"request_id": request_id_var.get()}

    return app


def test_generated_id_visible_inside_request():
    client = TestClient(_app())
    response = client.get("/echo")
    rid = response.headers["X-Request-ID"]
    uuid.UUID(rid)
    assert response.json() == {"request_id": rid}


def test_client_id_reused():
    client = TestClient(_app())
    response = client.get("/echo", headers={"X-Request-ID": "trace-42"})
    assert response.json() == {"request_id": "trace-42"}


def test_oversized_client_id_replaced():
    client = TestClient(_app())
    response = client.get("/echo", headers={"X-Request-ID": "x" * 500})
    uuid.UUID(response.headers["X-Request-ID"])


def test_context_reset_after_request():
    TestClient(_app()).get("/echo")
    assert request_id_var.get() == "-"


def test_log_filter_attaches_request_id():
    record = logging.LogRecord("buildrelay", logging.INFO, __file__, 1, "hello", None, None)
    token = request_id_var.set("abc")
    try:
        assert RequestIDLogFilter().filter(record) is True
    finally:
        request_id_var.reset(token)
    assert record.request_id == "abc"
