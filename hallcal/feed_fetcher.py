"""HTTP retrieval of calendar feeds - hallcal.

Resolves ``webcal://`` to HTTPS, follows redirects, and reports every
failure (transport error, timeout, non-success status) as a
``NetworkFailureError`` instead of returning an error body as text.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from .feed_exceptions import NetworkFailureError, TextNotCalendarError
from .http_client import get_shared_client

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

_WEBCAL_SCHEMES = ("webcal", "webcals")


def resolve_feed_url(url: str) -> str:
    """Map subscription URLs onto a fetchable scheme.

    ``webcal://host/x.ics`` becomes ``https://host/x.ics``.

    Raises:
        NetworkFailureError: If the URL is not http(s)/webcal or has no host
    """
    url = url.strip()
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme in _WEBCAL_SCHEMES:
        url = "https" + url[len(parsed.scheme) :]
        parsed = urlparse(url)
        scheme = "https"

    if scheme not in ("http", "https"):
        raise NetworkFailureError(f"Unsupported feed URL scheme: {parsed.scheme or '(none)'}")
    if not parsed.hostname:
        raise NetworkFailureError("Feed URL is missing a hostname")
    return url


class FeedFetcher:
    """Async HTTP client for downloading ICS feed text."""

    def __init__(self, settings: Any = None, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize fetcher.

        Args:
            settings: Object with request_timeout, max_retries, retry_backoff_factor
            client: Optional client to use instead of the shared pooled one
        """
        self.settings = settings
        self._client = client

    @property
    def request_timeout(self) -> float:
        return float(getattr(self.settings, "request_timeout", 30))

    @property
    def max_retries(self) -> int:
        return int(getattr(self.settings, "max_retries", 2))

    @property
    def backoff_factor(self) -> float:
        return float(getattr(self.settings, "retry_backoff_factor", 1.5))

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_shared_client("feeds", request_timeout=self.request_timeout)

    async def fetch_text(self, url: str) -> str:
        """Download the feed body at ``url``.

        Raises:
            NetworkFailureError: Transport failure, timeout or non-2xx status
            TextNotCalendarError: If the server returned an empty body
        """
        resolved = resolve_feed_url(url)
        response = await self._get_with_retry(resolved)

        text = response.text
        if not text or not text.strip():
            raise TextNotCalendarError("Empty response body")

        content_type = response.headers.get("content-type", "").lower()
        if content_type and not any(ct in content_type for ct in ("text/calendar", "text/plain")):
            logger.debug("Unexpected content type %r from %s", content_type, resolved)

        logger.debug("Fetched %d bytes from %s", len(text), resolved)
        return text

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with jitter, capped at MAX_BACKOFF_SECONDS."""
        base = min(self.backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base  # nosec B311
        return base + jitter

    async def _get_with_retry(self, url: str) -> httpx.Response:
        client = await self._get_client()
        attempt = 0
        while True:
            try:
                response = await client.get(url, timeout=self.request_timeout)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                # Status errors are answers, not transient failures
                status = e.response.status_code
                raise NetworkFailureError(
                    f"HTTP {status}: {e.response.reason_phrase}", status_code=status
                ) from e
            except (httpx.TimeoutException, httpx.TransportError) as e:
                if attempt >= self.max_retries:
                    logger.warning("All %d attempts failed for %s: %s", attempt + 1, url, e)
                    raise NetworkFailureError(f"Network error: {e}") from e
                backoff = self._calculate_backoff(attempt)
                logger.info(
                    "Request failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1,
                    self.max_retries + 1,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                attempt += 1
            else:
                return response
