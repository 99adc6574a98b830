"""BuildRelay -- FastAPI application entry point."""

import logging
import sys
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routers.builds import router as builds_router
from app.api.routers.health import router as health_router
from app.api.routers.hub import router as hub_router
from app.api.routers.notifications import router as notifications_router
from app.api.routers.pipelines import router as pipelines_router
from app.clients import http_client
from app.config import VERSION, settings
from app.middleware import RequestIDLogFilter, RequestIDMiddleware
from app.middleware.access_log import AccessLogMiddleware
from app.middleware.exception_handler import setup_exception_handlers
from app.repos.db import close_pool, get_pool
from app.services.build_queue import build_queue
from app.ws_manager import manager as ws_manager

logger = logging.getLogger(__name__)


class _ColorFormatter(logging.Formatter):
    """ANSI-colored log formatter for terminal output."""

    _COLORS = {
        logging.DEBUG:    "\033[36m",     # cyan
        logging.INFO:     "\033[32m",     # green
        logging.WARNING:  "\033[33m",     # yellow
        logging.ERROR:    "\033[31m",     # red
        logging.CRITICAL: "\033[1;31m",   # bold red
    }
    _RESET = "\033[0m"
    _DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self._COLORS.get(record.levelno, "")
        ts = self.formatTime(record, "%H:%M:%S")
        name = record.name.split(".")[-1][:20]
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"
        return (
            f"{self._DIM}{ts}{self._RESET} "
            f"{color}{record.levelname:<8s}{self._RESET} "
            f"{self._DIM}[{name:>20s}]{self._RESET} "
            f"{color}{msg}{self._RESET}"
        )


class _PlainFormatter(logging.Formatter):
    """Plain-text formatter for file logs (no ANSI codes)."""

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, "%Y-%m-%d %H:%M:%S")
        name = record.name.split(".")[-1][:20]
        msg = record.getMessage()
        if record.exc_info:
            msg = f"{msg}\n{self.formatException(record.exc_info)}"
        req = getattr(record, "request_id", "-")
        return f"{ts} {record.levelname:<8s} [{name:>20s}] req={req} {msg}"


def configure_logging() -> None:
    """Colour stderr handler, plus a rotating file when LOG_FILE is set."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(_ColorFormatter())
    handlers: list[logging.Handler] = [stream]

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            str(log_path),
            maxBytes=10 * 1024 * 1024,  # 10 MB per file
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(_PlainFormatter())
        file_handler.addFilter(RequestIDLogFilter())
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # Quiet noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Application lifespan: startup and shutdown hooks."""
    configure_logging()

    if "pytest" not in sys.modules:
        try:
            await get_pool()
            logger.info("Database pool initialised.")
        except Exception as exc:
            logger.warning("DB unavailable at startup (%s) — will retry on first request.", exc)

    await ws_manager.start_heartbeat()
    await build_queue.start()
    yield
    # Shutdown sequence -- order matters:
    # 1. Stop the consumer and in-flight notification tasks
    #    (must finish before the httpx client is closed)
    # 2. Stop heartbeat
    # 3. Close HTTP client
    # 4. Close DB pool
    await build_queue.stop()
    await ws_manager.stop_heartbeat()
    await http_client.close_client()
    await close_pool()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="BuildRelay",
        version=VERSION,
        description="Build orchestration and real-time event distribution",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    setup_exception_handlers(application)

    # AccessLogMiddleware innermost so it sees the request id.
    application.add_middleware(AccessLogMiddleware)
    application.add_middleware(RequestIDMiddleware)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Agent-Key"],
    )

    application.include_router(health_router)
    application.include_router(builds_router)
    application.include_router(pipelines_router)
    application.include_router(notifications_router)
    application.include_router(hub_router)
    return application


app = create_app()


def run() -> None:
    """Console entry point (``buildrelay``): serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
