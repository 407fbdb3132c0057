"""
Response normalization.

OData services answer in several shapes: v2 verbose JSON (``{"d": ...}``),
v4 JSON (``{"value": [...]}``) or Atom/XML when the server ignores the Accept
header. Everything is reduced to one shape before it reaches the caller:

- collections: ``{"results": [...], "pagination": {...}}``
- single entities: a plain dict
- primitive values: ``{"result": value}``
- empty responses: ``{"message": ...}``
"""

import json
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from lxml import etree

from .constants import DEFAULT_MAX_ITEMS, DEFAULT_MAX_RESPONSE_SIZE, NAMESPACES
from .errors import OriginRequestError
from .session import HttpResponse

logger = logging.getLogger(__name__)

_LEGACY_DATE_RE = re.compile(r'^/Date\((-?\d+)(?:[+-]\d{4})?\)/$')
_EPOCH = datetime(1970, 1, 1)

ATOM = NAMESPACES['atom']
METADATA = NAMESPACES['m']
DATA = NAMESPACES['d']


def parse_legacy_date(value: str) -> Optional[str]:
    """Convert /Date(1672531200000)/ to 2023-01-01T00:00:00Z."""
    match = _LEGACY_DATE_RE.match(value)
    if not match:
        return None
    try:
        dt = _EPOCH + timedelta(milliseconds=int(match.group(1)))
    except OverflowError:
        logger.debug(f"Could not parse legacy date {value}")
        return None
    return dt.isoformat() + 'Z'


def _atom_value(element) -> Any:
    """Typed value of a d:* property element."""
    if element.get(f'{{{METADATA}}}null') == 'true':
        return None
    if len(element):
        return {etree.QName(child).localname: _atom_value(child) for child in element
                if isinstance(child.tag, str)}
    text = element.text or ""
    edm_type = element.get(f'{{{METADATA}}}type', 'Edm.String')
    try:
        if edm_type in ('Edm.Int16', 'Edm.Int32', 'Edm.Int64', 'Edm.Byte', 'Edm.SByte'):
            return int(text)
        if edm_type in ('Edm.Double', 'Edm.Single'):
            return float(text)
    except ValueError:
        return text
    if edm_type == 'Edm.Boolean':
        return text.strip().lower() == 'true'
    return text


class ResponseNormalizer:
    """Turns OData HTTP responses into plain JSON-serializable values."""

    def __init__(self, max_items: int = DEFAULT_MAX_ITEMS, legacy_dates: bool = True,
                 response_metadata: bool = False, max_response_size: int = DEFAULT_MAX_RESPONSE_SIZE):
        self.max_items = max_items
        self.legacy_dates = legacy_dates
        self.response_metadata = response_metadata
        self.max_response_size = max_response_size

    def normalize(self, response: HttpResponse, skip: int = 0, primitive: bool = False) -> Any:
        """Normalize a successful response.

        ``skip`` is the $skip the request was sent with (for next-page hints);
        ``primitive`` unwraps single-value function results.
        """
        content = response.content or b""
        if self.max_response_size and len(content) > self.max_response_size:
            raise OriginRequestError(
                f"Response size ({len(content)} bytes) exceeds maximum allowed ({self.max_response_size} bytes)",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not content.strip():
            return {"message": "Operation successful (No content returned)."}

        content_type = (response.header('Content-Type') or '').lower()
        stripped = content.lstrip()
        if 'json' in content_type or stripped[:1] in (b'{', b'['):
            try:
                data = json.loads(content)
            except ValueError as e:
                raise OriginRequestError(f"Failed to parse OData JSON response: {e}",
                                         status_code=response.status_code)
            return self.normalize_json(data, skip=skip, primitive=primitive)
        if 'xml' in content_type or stripped[:1] == b'<':
            return self.normalize_xml(content, skip=skip)
        return {"result": response.text.strip()}

    # --- JSON ---

    def normalize_json(self, data: Any, skip: int = 0, primitive: bool = False) -> Any:
        if isinstance(data, dict) and 'd' in data:
            payload = data['d']
            if isinstance(payload, dict) and isinstance(payload.get('results'), list):
                return self._collection(payload['results'], payload.get('__count'), payload.get('__next'), skip)
            if isinstance(payload, list):
                return self._collection(payload, None, None, skip)
            if (primitive and isinstance(payload, dict) and len(payload) == 1
                    and '__metadata' not in payload):
                value = next(iter(payload.values()))
                if not isinstance(value, (dict, list)):
                    return {"result": self._clean(value)}
            return self._clean(payload)

        if isinstance(data, dict) and 'value' in data:
            value = data['value']
            if isinstance(value, list):
                return self._collection(value, data.get('@odata.count'), data.get('@odata.nextLink'), skip)
            if not isinstance(value, dict):
                return {"result": self._clean(value)}
            return self._clean(value)

        if isinstance(data, list):
            return self._collection(data, None, None, skip)
        if isinstance(data, dict):
            return self._clean(data)
        return {"result": data}

    def _clean(self, value: Any) -> Any:
        """Drop protocol noise and convert legacy dates, recursively."""
        if isinstance(value, dict):
            if set(value) == {'__deferred'}:
                return None
            if isinstance(value.get('results'), list) and set(value) <= {'results', '__count', '__next'}:
                return [self._clean(item) for item in value['results']]
            result = {}
            for key, item in value.items():
                if not self.response_metadata and (key == '__metadata' or '@odata.' in key):
                    continue
                if isinstance(item, dict) and set(item) == {'__deferred'}:
                    continue
                result[key] = self._clean(item)
            return result
        if isinstance(value, list):
            return [self._clean(item) for item in value]
        if isinstance(value, str) and self.legacy_dates:
            converted = parse_legacy_date(value)
            return converted if converted else value
        return value

    def _collection(self, items: List[Any], total: Any, next_link: Optional[str], skip: int) -> Dict[str, Any]:
        results = [self._clean(item) for item in items]
        pagination: Dict[str, Any] = {}

        if total is not None:
            try:
                pagination['total_count'] = int(total)
            except (TypeError, ValueError):
                logger.debug(f"Could not parse count value: {total}")

        if next_link:
            pagination['has_more'] = True
            query = parse_qs(urlparse(next_link).query)
            if '$skip' in query:
                try:
                    pagination['next_skip'] = int(query['$skip'][0])
                except ValueError:
                    pass
            elif '$skiptoken' in query:
                pagination['next_skiptoken'] = query['$skiptoken'][0]
        elif 'total_count' in pagination and pagination['total_count'] > skip + len(results):
            pagination['has_more'] = True
            pagination['next_skip'] = skip + len(results)
        else:
            pagination['has_more'] = False

        if self.max_items and len(results) > self.max_items:
            results = results[:self.max_items]
            pagination['truncated'] = True
            pagination['max_items'] = self.max_items
            pagination['has_more'] = True
            pagination['next_skip'] = skip + self.max_items

        return {"results": results, "pagination": pagination}

    # --- Atom / XML ---

    def normalize_xml(self, content: bytes, skip: int = 0) -> Any:
        parser = etree.XMLParser(resolve_entities=False, no_network=True, load_dtd=False)
        try:
            root = etree.fromstring(content, parser)
        except etree.XMLSyntaxError as e:
            raise OriginRequestError(f"Failed to parse OData XML response: {e}")

        qname = etree.QName(root)
        if qname.namespace == ATOM and qname.localname == 'feed':
            entries = [self._atom_entry(entry) for entry in root.findall(f'{{{ATOM}}}entry')]
            count = root.find(f'{{{METADATA}}}count')
            next_link = None
            for link in root.findall(f'{{{ATOM}}}link'):
                if link.get('rel') == 'next':
                    next_link = link.get('href')
            return self._collection(entries, count.text if count is not None else None, next_link, skip)
        if qname.namespace == ATOM and qname.localname == 'entry':
            return self._clean(self._atom_entry(root))
        if qname.namespace == DATA:
            if len(root) and all(etree.QName(child).localname == 'element' for child in root
                                 if isinstance(child.tag, str)):
                return self._collection([_atom_value(child) for child in root if isinstance(child.tag, str)],
                                        None, None, skip)
            value = _atom_value(root)
            return self._clean(value) if isinstance(value, dict) else {"result": self._clean(value)}

        logger.debug(f"Unrecognized XML response root {root.tag}")
        return {"result": content.decode('utf-8', errors='replace')[:1000]}

    def _atom_entry(self, entry) -> Dict[str, Any]:
        properties = entry.find(f'{{{ATOM}}}content/{{{METADATA}}}properties')
        if properties is None:
            properties = entry.find(f'{{{METADATA}}}properties')
        data = {}
        if properties is not None:
            for prop in properties:
                if isinstance(prop.tag, str):
                    data[etree.QName(prop).localname] = _atom_value(prop)
        if self.response_metadata:
            entry_id = entry.find(f'{{{ATOM}}}id')
            if entry_id is not None:
                data['__metadata'] = {'uri': entry_id.text}
        return data
