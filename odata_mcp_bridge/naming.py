"""
Tool naming: short names, the per-service suffix and name filters.

The generator and the dispatcher both go through this module so that every
advertised tool name can be resolved back to the entity set it was built for.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')
_IGNORED_SEGMENTS = {'api', 'odata', 'sap', 'opu'}


def shorten_name(name: str) -> str:
    """CustomerOrders -> customer_orders."""
    return _CAMEL_BOUNDARY.sub('_', name).lower()


def _clean_identifier(value: str) -> str:
    value = re.sub(r'[^a-zA-Z0-9_]', '_', value)
    return re.sub(r'_+', '_', value).strip('_')


def service_identifier(service_url: str) -> str:
    """Last meaningful path segment of the service URL, without a trailing '.svc'."""
    parsed = urlparse(service_url)
    segments = [p for p in parsed.path.split('/') if p]
    while segments:
        segment = segments.pop()
        if segment.lower().endswith('.svc'):
            segment = segment[:-4]
        if segment.lower() in _IGNORED_SEGMENTS:
            continue
        clean = _clean_identifier(segment)
        if clean:
            return clean
    if parsed.hostname:
        clean = _clean_identifier(parsed.hostname.split('.')[0])
        if clean:
            return clean
    return 'odata'


def service_suffix(service_url: str, shrink: bool = False, postfix: Optional[str] = None) -> str:
    if postfix is not None:
        return postfix
    identifier = service_identifier(service_url)
    if shrink:
        identifier = shorten_name(identifier)
    return f"_for_{identifier}"


def matches_name_filter(name: str, patterns: Optional[Iterable[str]]) -> bool:
    """True if no patterns are configured or the name matches one of them.

    A pattern is either an exact name or a prefix ending in '*'; both compare
    case-insensitively.
    """
    if not patterns:
        return True
    lowered = name.lower()
    for pattern in patterns:
        pattern = pattern.strip()
        if not pattern:
            continue
        if pattern == '*':
            return True
        if pattern.endswith('*'):
            if lowered.startswith(pattern[:-1].lower()):
                return True
        elif lowered == pattern.lower():
            return True
    return False


def assign_short_names(names: List[str], shrink: bool) -> Dict[str, str]:
    """Map each entity name to the name used inside tool names.

    Without shrinking this is the identity. With shrinking, a short name that
    was already taken by an earlier entity gets a numeric suffix (_2, _3, ...)
    in declaration order.
    """
    assigned: Dict[str, str] = {}
    taken = set()
    for name in names:
        if not shrink:
            assigned[name] = name
            continue
        base = shorten_name(name)
        candidate = base
        counter = 2
        while candidate.lower() in taken:
            candidate = f"{base}_{counter}"
            counter += 1
        if candidate != base:
            logger.warning(f"Short name '{base}' for '{name}' is already in use, using '{candidate}'")
        taken.add(candidate.lower())
        assigned[name] = candidate
    return assigned


def resolve_entity_name(name: str, short_names: Dict[str, str]) -> Optional[str]:
    """Inverse of assign_short_names: exact entity name first, then the assigned short names."""
    if name in short_names:
        return name
    lowered = name.lower()
    for entity_name, short in short_names.items():
        if short.lower() == lowered:
            return entity_name
    return None
