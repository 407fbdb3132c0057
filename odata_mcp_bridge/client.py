"""
OData HTTP client: request execution, CSRF token handling and error mapping.

Every exchange is awaited on the calling task. Cancelling a tool call
therefore aborts its in-flight request instead of letting it finish in the
background.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import aiohttp

from .config import BridgeConfig
from .constants import CSRF_FETCH, CSRF_HEADER, CSRF_REQUIRED
from .csrf import CsrfTokenCache
from .errors import CsrfTokenError, OriginRequestError
from .session import TRANSPORT_ERRORS, HttpResponse, create_session, send_request

logger = logging.getLogger(__name__)

_XML_MESSAGE_RE = re.compile(r'<(?:\w+:)?message[^>]*>([^<]+)</(?:\w+:)?message>', re.IGNORECASE)


def encode_query_params(params: Dict[str, Any]) -> str:
    """Encode query parameters properly for OData compatibility.

    OData servers (especially SAP CAP backends) don't accept '+' for spaces
    in URL parameters. They require '%20' according to RFC 3986.
    """
    encoded = urlencode(params, doseq=True, safe='$')
    return encoded.replace('+', '%20')


def _first_error_message(error_obj: Dict[str, Any]) -> Optional[str]:
    message = error_obj.get('message')
    if isinstance(message, dict) and message.get('value'):
        return str(message['value'])
    if isinstance(message, str) and message:
        return message

    # SAP specific inner error structure
    inner_error = error_obj.get('innererror')
    if isinstance(inner_error, dict):
        details = inner_error.get('errordetails')
        if isinstance(details, list):
            messages = [str(d.get('message') or d.get('code')) for d in details
                        if isinstance(d, dict) and (d.get('message') or d.get('code'))]
            if messages:
                return "; ".join(messages)
        if inner_error.get('message'):
            return str(inner_error['message'])
    return None


def parse_odata_error(response: HttpResponse) -> Tuple[str, Any]:
    """Extract (message, details) from an OData error response.

    ``details`` is the service's error object when the body is a JSON error
    payload, otherwise the first 500 characters of the body.
    """
    text = response.text or ""
    if not text.strip():
        return f"HTTP {response.status_code}: {response.reason or 'Empty response'}", None

    try:
        data = json.loads(text)
    except ValueError:
        data = None

    if isinstance(data, dict):
        error_obj = data.get('error') if isinstance(data.get('error'), dict) else None
        if error_obj is not None:
            message = _first_error_message(error_obj)
            if message and error_obj.get('code'):
                message = f"{error_obj['code']}: {message}"
            return message or json.dumps(error_obj)[:500], error_obj
        for key in ('Message', 'ExceptionMessage', 'message'):
            if isinstance(data.get(key), str):
                return data[key], data
        return json.dumps(data)[:500], data

    match = _XML_MESSAGE_RE.search(text)
    if match:
        return match.group(1).strip(), text[:500]
    return text[:500], text[:500]


class ODataClient:
    """Client for executing requests against one OData service."""

    def __init__(self, config: BridgeConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.base_url = config.service_url.rstrip('/')
        self.verbose_errors = config.verbose_errors
        self._session = session
        self.csrf = CsrfTokenCache(self._fetch_csrf_token)

    @property
    def session(self) -> aiohttp.ClientSession:
        """The shared client session, created on first use inside the event loop."""
        if self._session is None or self._session.closed:
            self._session = create_session(self.config)
        return self._session

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def build_url(self, path: str, query: Optional[str] = None) -> str:
        url = f"{self.base_url}/{path}" if path else self.base_url
        return f"{url}?{query}" if query else url

    async def send(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
                   json_body: Any = None) -> HttpResponse:
        """One raw HTTP exchange. Transport errors propagate unmapped."""
        logger.debug(f"Requesting: {method} {url}")
        return await send_request(self.session, method, url, headers=headers, json_body=json_body)

    async def _fetch_csrf_token(self) -> Optional[str]:
        """HEAD request against the service root asking for a fresh token."""
        logger.debug(f"Fetching CSRF token from service root: {self.base_url}")
        try:
            response = await self.send('HEAD', self.base_url, headers={CSRF_HEADER: CSRF_FETCH})
        except TRANSPORT_ERRORS as e:
            raise CsrfTokenError(f"Failed to fetch CSRF token: {e}") from e

        token = response.header(CSRF_HEADER)
        if token and token.lower() not in ('fetch', 'required'):
            return token
        if response.status_code in (401, 403):
            raise CsrfTokenError(f"CSRF token fetch was rejected (HTTP {response.status_code})")
        return None

    def _is_csrf_rejection(self, response: HttpResponse) -> bool:
        if response.status_code != 403:
            return False
        if (response.header(CSRF_HEADER) or '').lower() == CSRF_REQUIRED.lower():
            return True
        return 'csrf' in (response.text or '').lower()

    async def _execute(self, method: str, url: str, headers: Dict[str, str],
                       json_body: Any = None) -> HttpResponse:
        try:
            return await self.send(method, url, headers=headers, json_body=json_body)
        except asyncio.CancelledError:
            logger.debug(f"Request cancelled, connection dropped: {method} {url}")
            raise
        except TRANSPORT_ERRORS as e:
            raise OriginRequestError(f"OData request failed: {method} {url}: {e}") from e

    async def request(self, method: str, path: str, query: Optional[str] = None, json_body: Any = None,
                      csrf: bool = False) -> HttpResponse:
        """Send one request and return the successful response.

        With ``csrf`` a token is attached; a stale token is refreshed and the
        request retried exactly once.
        """
        url = self.build_url(path, query)
        headers: Dict[str, str] = {}
        token = None
        if csrf:
            token = await self.csrf.get_or_refresh()
            if token:
                headers[CSRF_HEADER] = token

        response = await self._execute(method, url, headers, json_body)

        if csrf and self._is_csrf_rejection(response):
            logger.debug("CSRF token validation failed, attempting to refetch...")
            self.csrf.invalidate(token)
            token = await self.csrf.get_or_refresh()
            if not token:
                raise CsrfTokenError(
                    f"CSRF token required but refetch failed. Status: {response.status_code}. "
                    f"Response: {(response.text or '')[:500]}"
                )
            headers[CSRF_HEADER] = token
            response = await self._execute(method, url, headers, json_body)
            if self._is_csrf_rejection(response):
                self.csrf.invalidate(token)
                raise CsrfTokenError(f"CSRF token rejected twice for {method} {url}")

        if response.status_code >= 400:
            raise self._origin_error(method, url, response)
        return response

    def _origin_error(self, method: str, url: str, response: HttpResponse) -> OriginRequestError:
        message, details = parse_odata_error(response)
        logger.debug(f"OData HTTP Error: {response.status_code} for {method} {url}. Message: {message}")
        text = f"OData request failed ({response.status_code}): {message}"
        if self.verbose_errors:
            text += f" [{method} {url}]"
            if details is not None and not isinstance(details, str):
                text += f" Details: {json.dumps(details)}"
        return OriginRequestError(text, status_code=response.status_code, details=details)
