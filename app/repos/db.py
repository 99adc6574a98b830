"""Database connection pool management.

Wraps :class:`asyncpg.Pool` so that the shorthand query methods retry
when a pooled connection turns out to be dead (database restart, idle
connection reaped by a proxy).  Build callbacks arrive from remote
workers at arbitrary times, so a stale connection is the common case
after a quiet period.
"""

import asyncio
import logging
from typing import Any

import asyncpg

from app.config import settings

logger = logging.getLogger(__name__)

# Exceptions that mean "the connection died; retry with a fresh one"
_RETRY_EXCEPTIONS = (
    asyncpg.ConnectionDoesNotExistError,
    asyncpg.InterfaceError,
    ConnectionResetError,
    OSError,
)

_MAX_RETRIES = 3
_POOL_MIN_SIZE = 2
_POOL_MAX_SIZE = 10


class _RetryingPool:
    """Proxy for :class:`asyncpg.Pool` whose query shorthands retry on dead connections.

    ``acquire()`` / ``transaction`` usage is passed straight through.  Pass
    ``retry=False`` for statements that must not be replayed: an INSERT
    whose connection drops after the server committed it would otherwise
    be written twice.
    """

    __slots__ = ("_pool",)

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def fetch(self, query: str, *args: Any, retry: bool = True, **kw: Any) -> list:
        return await self._run(self._pool.fetch, retry, query, *args, **kw)

    async def fetchrow(self, query: str, *args: Any, retry: bool = True, **kw: Any):
        return await self._run(self._pool.fetchrow, retry, query, *args, **kw)

    async def fetchval(self, query: str, *args: Any, retry: bool = True, **kw: Any):
        return await self._run(self._pool.fetchval, retry, query, *args, **kw)

    async def execute(self, query: str, *args: Any, retry: bool = True, **kw: Any) -> str:
        return await self._run(self._pool.execute, retry, query, *args, **kw)

    @staticmethod
    async def _run(func, retry: bool, *args: Any, **kw: Any):
        attempts = _MAX_RETRIES + 1 if retry else 1
        for attempt in range(attempts):
            try:
                return await func(*args, **kw)
            except _RETRY_EXCEPTIONS as exc:
                if attempt >= attempts - 1:
                    if retry:
                        _invalidate_pool()
                    raise
                wait = min(0.25 * (2 ** attempt), 5.0)
                logger.warning(
                    "DB connection lost (attempt %d/%d): %s, retrying in %.2fs",
                    attempt + 1, attempts, exc, wait,
                )
                await asyncio.sleep(wait)
        raise RuntimeError("unreachable")  # pragma: no cover

    def __getattr__(self, name: str):
        return getattr(self._pool, name)


_pool: asyncpg.Pool | None = None
_pool_loop: asyncio.AbstractEventLoop | None = None
_wrapper: _RetryingPool | None = None


def _invalidate_pool() -> None:
    """Drop the module-level pool so the next get_pool() builds a new one."""
    global _pool, _wrapper
    _pool = None
    _wrapper = None


async def get_pool() -> _RetryingPool:
    """Get or create the database connection pool.

    If the running event loop has changed (common in test suites),
    the stale pool is discarded and a fresh one is created.
    """
    global _pool, _pool_loop, _wrapper
    loop = asyncio.get_running_loop()
    if _pool is not None and _pool_loop is not loop:
        _pool.terminate()
        _invalidate_pool()
    if _pool is None:
        _pool = await asyncio.wait_for(
            asyncpg.create_pool(
                dsn=settings.DATABASE_URL,
                min_size=_POOL_MIN_SIZE,
                max_size=_POOL_MAX_SIZE,
                command_timeout=30,
                max_inactive_connection_lifetime=300.0,
            ),
            timeout=15,
        )
        _pool_loop = loop
        _wrapper = _RetryingPool(_pool)
    return _wrapper  # type: ignore[return-value]


async def close_pool() -> None:
    """Close the database connection pool."""
    global _pool, _pool_loop, _wrapper
    if _pool is not None:
        await _pool.close()
        _pool = None
        _pool_loop = None
        _wrapper = None
