"""Alembic environment for BuildRelay -- async mode with asyncpg.

Migrations are raw SQL (``op.execute``); there is no SQLAlchemy metadata.
The URL comes from ``DATABASE_URL`` (env or app settings) and is rewritten
to the ``postgresql+asyncpg://`` dialect for SQLAlchemy.
"""

import asyncio
import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

# Project root on sys.path so app.config is importable from the alembic CLI
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

_ASYNC_SCHEME = "postgresql+asyncpg://"


def _get_url() -> str:
    """Return the async-compatible database URL."""
    url = os.getenv("DATABASE_URL", "")
    if not url:
        from app.config import settings
        url = settings.DATABASE_URL
    if not url:
        raise RuntimeError("DATABASE_URL is not set.  Export it or add it to .env.")
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return _ASYNC_SCHEME + url[len(prefix):]
    return url


def run_migrations_offline() -> None:
    """Emit SQL without a live database."""
    context.configure(
        url=_get_url(),
        target_metadata=None,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _do_run_migrations(connection) -> None:  # type: ignore[no-untyped-def]
    context.configure(connection=connection, target_metadata=None)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations against a live database with an async engine."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = _get_url()

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(_do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
