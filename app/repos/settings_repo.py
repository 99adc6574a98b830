"""Settings repository -- generic key/value store (``settings`` table)."""

from app.repos.db import get_pool


async def get_setting(key: str) -> str | None:
    """Return the stored value for *key*, or None if unset."""
    pool = await get_pool()
    return await pool.fetchval("SELECT value FROM settings WHERE key = $1", key)


async def set_setting(key: str, value: str) -> None:
    """Insert or replace the value for *key*."""
    pool = await get_pool()
    await pool.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES ($1, $2, now())
        ON CONFLICT (key) DO UPDATE SET
            value = EXCLUDED.value,
            updated_at = now()
        """,
        key,
        value,
    )
