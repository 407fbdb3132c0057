"""
Typed errors raised by the OData MCP bridge.

Every error carries a stable machine-readable ``kind`` and a human-readable
message. Startup errors (schema acquisition and parsing) stop initialization;
the rest are per-call errors that the bridge returns to the caller as an
``{"error": {...}}`` payload.
"""

from typing import Any, Dict, List, Optional, Tuple


class ODataBridgeError(Exception):
    """Base class for all bridge errors."""

    kind = "bridge_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class SchemaAcquisitionError(ODataBridgeError):
    kind = "schema_acquisition"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.status_code is not None:
            data["status_code"] = self.status_code
        return data


class SchemaParseError(ODataBridgeError):
    """All metadata parsing strategies failed."""

    kind = "schema_parse"

    def __init__(self, message: str, attempts: Optional[List[Tuple[str, str]]] = None):
        super().__init__(message)
        self.attempts = attempts or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = [{"strategy": name, "reason": reason} for name, reason in self.attempts]
        return data


class ToolNotFoundError(ODataBridgeError):
    kind = "tool_not_found"

    def __init__(self, tool_name: str, message: Optional[str] = None):
        super().__init__(message or f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class EntityNotFoundError(ODataBridgeError):
    kind = "entity_not_found"

    def __init__(self, entity_name: str, tool_name: Optional[str] = None):
        message = f"Entity set '{entity_name}' not found"
        if tool_name:
            message += f" (resolving tool '{tool_name}')"
        super().__init__(message)
        self.entity_name = entity_name
        self.tool_name = tool_name


class InvalidArgumentError(ODataBridgeError):
    """A required argument is missing or a value cannot be encoded."""

    kind = "invalid_argument"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class OriginRequestError(ODataBridgeError):
    """The OData service answered with a non-success status or could not be reached."""

    kind = "origin_request"

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.status_code is not None:
            data["status_code"] = self.status_code
        if self.details is not None:
            data["details"] = self.details
        return data


class CsrfTokenError(ODataBridgeError):
    kind = "csrf_token"
