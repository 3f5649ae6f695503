"""Shared HTTP client manager for feed retrieval.

One pooled ``httpx.AsyncClient`` is reused across all feed refreshes so
independently-timed feeds share connections instead of each creating a
client per fetch.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "HallwayCalendar/1.0"

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.5",
}

_DEFAULT_LIMITS = httpx.Limits(max_connections=10, max_keepalive_connections=5)

_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_lock: Optional[asyncio.Lock] = None


def _get_lock() -> asyncio.Lock:
    # Created lazily so importing this module does not need a running loop
    global _client_lock
    if _client_lock is None:
        _client_lock = asyncio.Lock()
    return _client_lock


def build_timeout(request_timeout: float) -> httpx.Timeout:
    return httpx.Timeout(connect=10.0, read=request_timeout, write=10.0, pool=30.0)


async def get_shared_client(
    client_id: str = "default",
    request_timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client with connection pooling.

    Args:
        client_id: Identifier for the client (allows multiple clients if needed)
        request_timeout: Read timeout in seconds for new clients
        transport: Optional transport override, used by tests

    Returns:
        Shared httpx.AsyncClient that follows redirects
    """
    async with _get_lock():
        client = _shared_clients.get(client_id)
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                limits=_DEFAULT_LIMITS,
                timeout=build_timeout(request_timeout),
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
                transport=transport,
            )
            _shared_clients[client_id] = client
            logger.debug("Created shared HTTP client %r", client_id)
        return client


async def close_all_clients() -> None:
    """Close all shared HTTP clients.

    Called during application shutdown. The lock is dropped as well so a
    later event loop starts clean.
    """
    global _client_lock
    async with _get_lock():
        for client_id, client in _shared_clients.items():
            if not client.is_closed:
                try:
                    await client.aclose()
                except Exception as e:  # noqa: PERF203
                    logger.warning("Error closing shared HTTP client %r: %s", client_id, e)
                else:
                    logger.debug("Closed shared HTTP client %r", client_id)
        _shared_clients.clear()
    _client_lock = None
