"""
CSRF token cache for OData services that require an anti-forgery token on
modifying requests (SAP Gateway and friends).

The token is fetched lazily with a ``X-CSRF-Token: Fetch`` HEAD request, kept for
a fixed time-to-live and dropped when it expires or the server rejects it.
Concurrent callers that find no valid token share a single in-flight fetch.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .constants import CSRF_TOKEN_TTL_SECONDS

logger = logging.getLogger(__name__)

TokenFetcher = Callable[[], Awaitable[Optional[str]]]


class CsrfTokenCache:
    """Single-flight cache for one service's CSRF token."""

    def __init__(self, fetch: TokenFetcher, ttl: float = CSRF_TOKEN_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self._fetch = fetch
        self._ttl = ttl
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token: Optional[str] = None
        self._acquired_at = 0.0
        self.fetch_count = 0

    @property
    def token(self) -> Optional[str]:
        """The cached token if it has not expired yet."""
        if self._token is not None and self._clock() - self._acquired_at >= self._ttl:
            logger.debug("CSRF token expired")
            self._token = None
        return self._token

    async def get_or_refresh(self) -> Optional[str]:
        """Return a valid token, fetching one if needed.

        Returns None when the service does not hand out tokens; nothing is
        cached in that case.
        """
        token = self.token
        if token is not None:
            return token
        async with self._lock:
            # Another caller may have refreshed while we waited for the lock
            token = self.token
            if token is not None:
                return token
            self.fetch_count += 1
            token = await self._fetch()
            if token:
                self._token = token
                self._acquired_at = self._clock()
                logger.debug(f"CSRF token fetched successfully: {token[:20]}...")
            else:
                logger.debug("Service did not return a CSRF token, proceeding without one")
            return token

    def invalidate(self, stale_token: Optional[str] = None):
        """Drop the cached token.

        With ``stale_token`` the cache is only cleared if it still holds that
        token, so a fresh token fetched by another caller survives.
        """
        if stale_token is None or self._token == stale_token:
            self._token = None
