"""
Key literal formatting for OData resource paths.

``format_key_literal`` renders a value the way the OData URL grammar expects
it inside ``EntitySet(<literal>)`` or as a function parameter. The legacy (v2)
forms are the default; ``modern=True`` selects the v4 forms where the two
dialects differ (guid, date/time and binary literals).
"""

import base64
import binascii
import logging
import re
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from .constants import (
    INTEGER_KINDS, INTEGER_RANGES, KIND_BINARY, KIND_BOOLEAN, KIND_DATE, KIND_DATETIME,
    KIND_DATETIMEOFFSET, KIND_GUID, KIND_STRING, KIND_TIME, KIND_UNKNOWN, NUMBER_KINDS,
    ODATA_PRIMITIVE_TYPES,
)
from .errors import InvalidArgumentError
from .models import EntityType

logger = logging.getLogger(__name__)

_INTEGER_RE = re.compile(r'^[+-]?\d+$')
_DURATION_RE = re.compile(r'^PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)(?:\.(\d+))?S)?$')
_PREFIXED_RE = re.compile(r"^(\w+)'(.*)'$", re.DOTALL)


def _kind_for(edm_type: str) -> str:
    kind = ODATA_PRIMITIVE_TYPES.get(edm_type, KIND_UNKNOWN)
    if kind == KIND_UNKNOWN:
        logger.warning(f"Unrecognized key type '{edm_type}', formatting the value as a string literal")
        return KIND_STRING
    return kind


def _invalid(field: Optional[str], value: Any, expected: str) -> InvalidArgumentError:
    label = f"'{field}'" if field else "value"
    return InvalidArgumentError(f"Invalid {label}: {value!r} is not a valid {expected}", field=field)


def _to_int(value: Any, kind: str, field: Optional[str]) -> int:
    if isinstance(value, bool):
        raise _invalid(field, value, kind)
    if isinstance(value, int):
        result = value
    elif isinstance(value, float) and value.is_integer():
        result = int(value)
    elif isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        result = int(value)
    elif isinstance(value, str) and _INTEGER_RE.match(value.strip()):
        result = int(value.strip())
    else:
        raise _invalid(field, value, kind)
    low, high = INTEGER_RANGES[kind]
    if not low <= result <= high:
        raise InvalidArgumentError(f"Value {result} for '{field}' is out of range for {kind}", field=field)
    return result


def _to_decimal(value: Any, kind: str, field: Optional[str]) -> Decimal:
    if isinstance(value, bool):
        raise _invalid(field, value, kind)
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise _invalid(field, value, kind)
    if not result.is_finite():
        raise _invalid(field, value, kind)
    return result


def _to_bool(value: Any, field: Optional[str]) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
        return value.strip().lower() == 'true'
    raise _invalid(field, value, "boolean")


def _to_guid(value: Any, field: Optional[str]) -> str:
    try:
        return str(uuid.UUID(str(value).strip()))
    except ValueError:
        raise _invalid(field, value, "guid")


def _to_datetime(value: Any, field: Optional[str]) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(('Z', 'z')):
            text = text[:-1] + '+00:00'
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
    raise _invalid(field, value, "ISO-8601 date/time")


def _to_date(value: Any, field: Optional[str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise _invalid(field, value, "ISO-8601 date")


def _to_time(value: Any, field: Optional[str]) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        text = value.strip()
        match = _DURATION_RE.match(text)
        if match and any(match.groups()):
            hours, minutes, seconds, fraction = match.groups()
            micro = int((fraction or '0').ljust(6, '0')[:6])
            try:
                return time(int(hours or 0), int(minutes or 0), int(seconds or 0), micro)
            except ValueError:
                raise _invalid(field, value, "time of day")
        try:
            return time.fromisoformat(text)
        except ValueError:
            pass
    raise _invalid(field, value, "time of day")


def _to_bytes(value: Any, field: Optional[str]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return bytes.fromhex(value.strip())
        except ValueError:
            pass
    raise _invalid(field, value, "hex encoded binary value")


def _fraction(microsecond: int) -> str:
    if not microsecond:
        return ""
    return "." + f"{microsecond:06d}".rstrip('0')


def _format_datetime(value: datetime, modern: bool) -> str:
    if not modern:
        naive = value.replace(tzinfo=None)
        return f"datetime'{naive.strftime('%Y-%m-%dT%H:%M:%S')}{_fraction(naive.microsecond)}'"
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    offset = value.strftime('%z')
    offset = 'Z' if offset in ('+0000', '-0000') else f"{offset[:3]}:{offset[3:5]}"
    return f"{value.strftime('%Y-%m-%dT%H:%M:%S')}{_fraction(value.microsecond)}{offset}"


def format_key_literal(value: Any, edm_type: str, modern: bool = False, field: Optional[str] = None) -> str:
    """Render ``value`` as the OData URL literal for ``edm_type``.

    Raises InvalidArgumentError when the value cannot be represented in the
    requested type. Unknown types fall back to the string form.
    """
    if value is None:
        raise InvalidArgumentError(f"Missing value for '{field}'" if field else "Missing key value", field=field)

    kind = _kind_for(edm_type)
    if kind == KIND_STRING:
        return "'" + str(value).replace("'", "''") + "'"
    if kind == KIND_GUID:
        guid = _to_guid(value, field)
        return guid if modern else f"guid'{guid}'"
    if kind == KIND_BOOLEAN:
        return 'true' if _to_bool(value, field) else 'false'
    if kind in INTEGER_KINDS:
        return str(_to_int(value, kind, field))
    if kind in NUMBER_KINDS:
        return format(_to_decimal(value, kind, field), 'f')
    if kind in (KIND_DATETIME, KIND_DATETIMEOFFSET):
        return _format_datetime(_to_datetime(value, field), modern)
    if kind == KIND_DATE:
        return _to_date(value, field).isoformat()
    if kind == KIND_TIME:
        t = _to_time(value, field)
        if modern:
            return f"{t.strftime('%H:%M:%S')}{_fraction(t.microsecond)}"
        return f"time'PT{t.hour:02d}H{t.minute:02d}M{t.second:02d}{_fraction(t.microsecond)}S'"
    if kind == KIND_BINARY:
        raw = _to_bytes(value, field)
        if modern:
            return "binary'" + base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=') + "'"
        return f"binary'{raw.hex().upper()}'"
    raise _invalid(field, value, edm_type)


def _unwrap(literal: str, prefix: str) -> str:
    match = _PREFIXED_RE.match(literal)
    if not match or match.group(1).lower() != prefix:
        raise ValueError(f"Expected a {prefix}'...' literal, got {literal!r}")
    return match.group(2)


def parse_key_literal(literal: str, edm_type: str, modern: bool = False) -> Any:
    """Inverse of format_key_literal: turn a URL literal back into a Python value."""
    kind = ODATA_PRIMITIVE_TYPES.get(edm_type, KIND_STRING)
    if kind == KIND_STRING:
        if len(literal) < 2 or not (literal.startswith("'") and literal.endswith("'")):
            raise ValueError(f"Expected a quoted string literal, got {literal!r}")
        return literal[1:-1].replace("''", "'")
    if kind == KIND_GUID:
        return str(uuid.UUID(literal if modern else _unwrap(literal, 'guid')))
    if kind == KIND_BOOLEAN:
        if literal not in ('true', 'false'):
            raise ValueError(f"Expected true or false, got {literal!r}")
        return literal == 'true'
    if kind in INTEGER_KINDS:
        return int(literal)
    if kind in NUMBER_KINDS:
        return Decimal(literal)
    if kind in (KIND_DATETIME, KIND_DATETIMEOFFSET):
        text = literal if modern else _unwrap(literal, 'datetime')
        return _to_datetime(text, None)
    if kind == KIND_DATE:
        return date.fromisoformat(literal)
    if kind == KIND_TIME:
        return _to_time(literal if modern else _unwrap(literal, 'time'), None)
    if kind == KIND_BINARY:
        text = _unwrap(literal, 'binary')
        if modern:
            try:
                return base64.urlsafe_b64decode(text + '=' * (-len(text) % 4))
            except binascii.Error as e:
                raise ValueError(str(e))
        return bytes.fromhex(text)
    raise ValueError(f"Cannot parse literal of type {edm_type}")


def build_key_predicate(entity_type: EntityType, key_values: Mapping[str, Any], modern: bool = False) -> str:
    """Build the parenthesized key part of a resource path.

    A single key renders as ``(42)``; composite keys render as
    ``(OrderID=1,ProductID=2)`` in key declaration order.
    """
    key_props = entity_type.get_key_properties()
    if not key_props:
        raise InvalidArgumentError(f"Entity type '{entity_type.name}' has no key properties")

    missing = [prop.name for prop in key_props if key_values.get(prop.name) is None]
    if missing:
        raise InvalidArgumentError(f"Missing required key parameters: {', '.join(missing)}", field=missing[0])

    if len(key_props) == 1:
        prop = key_props[0]
        return f"({format_key_literal(key_values[prop.name], prop.type, modern, field=prop.name)})"

    parts = [
        f"{prop.name}={format_key_literal(key_values[prop.name], prop.type, modern, field=prop.name)}"
        for prop in key_props
    ]
    return f"({','.join(parts)})"
