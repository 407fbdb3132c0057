"""
HTTP session and response handling shared by the metadata fetcher and the
OData client.

Requests run on ``aiohttp``: a request is an awaitable on the caller's task,
so cancelling a tool call closes the connection it is waiting on.
"""

import asyncio
import logging
import re
from typing import Any, Dict, Mapping, Optional

import aiohttp

from .config import BridgeConfig
from .constants import USER_AGENT

logger = logging.getLogger(__name__)

# Connection, protocol and timeout failures
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)

_CHARSET_RE = re.compile(r'charset=["\']?([\w.:-]+)', re.IGNORECASE)


class HttpResponse:
    """A fully read HTTP response."""

    def __init__(self, status_code: int, content: bytes = b"", headers: Optional[Mapping[str, str]] = None,
                 reason: Optional[str] = None):
        self.status_code = status_code
        self.content = content or b""
        self.headers: Dict[str, str] = {name.lower(): value for name, value in (headers or {}).items()}
        self.reason = reason

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def text(self) -> str:
        match = _CHARSET_RE.search(self.header('Content-Type') or '')
        encoding = match.group(1) if match else 'utf-8'
        try:
            return self.content.decode(encoding, errors='replace')
        except LookupError:
            return self.content.decode('utf-8', errors='replace')


def create_session(config: BridgeConfig) -> aiohttp.ClientSession:
    """Create a client session with the configured authentication and JSON defaults.

    Must be called from a running event loop.
    """
    auth = None
    cookies = None
    if config.cookies:
        cookies = dict(config.cookies)
        logger.debug(f"Using cookie authentication ({len(config.cookies)} cookies)")
    elif config.auth:
        auth = aiohttp.BasicAuth(*config.auth)
        logger.debug(f"Using basic authentication for user '{config.username}'")
    else:
        logger.debug("No authentication configured")

    # Standard headers, always prefer JSON
    headers = {
        'Accept': 'application/json',
        'Content-Type': 'application/json',
        'User-Agent': USER_AGENT,
    }
    return aiohttp.ClientSession(
        headers=headers,
        auth=auth,
        cookies=cookies,
        timeout=aiohttp.ClientTimeout(total=config.timeout),
    )


async def send_request(session: aiohttp.ClientSession, method: str, url: str,
                       headers: Optional[Dict[str, str]] = None, json_body: Any = None) -> HttpResponse:
    """Send one request and read the whole body."""
    async with session.request(method, url, headers=headers, json=json_body) as response:
        content = await response.read()
        return HttpResponse(response.status, content, response.headers, response.reason)
