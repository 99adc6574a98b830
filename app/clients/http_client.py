"""Shared outbound HTTP client for notification delivery."""

import httpx

from app.config import settings

# ── Shared HTTP client (connection pooling) ─────────────────────────────────

_client: httpx.AsyncClient | None = None


def get_client() -> httpx.AsyncClient:
    """Return (or create) the shared httpx client for outbound notifications."""
    global _client
    if _client is None:
        _client = httpx.AsyncClient(
            timeout=settings.NOTIFICATION_TIMEOUT_SECONDS,
            headers={"User-Agent": "BuildRelay-Notifier"},
        )
    return _client


async def close_client() -> None:
    """Close the shared HTTP client.  Called during app shutdown."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
