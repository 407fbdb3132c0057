"""
Constants used throughout the OData MCP bridge.
"""

# Primitive kinds understood by the key literal formatter and the schema generator
KIND_STRING = "string"
KIND_INT16 = "int16"
KIND_INT32 = "int32"
KIND_INT64 = "int64"
KIND_BYTE = "byte"
KIND_SBYTE = "sbyte"
KIND_DECIMAL = "decimal"
KIND_DOUBLE = "double"
KIND_SINGLE = "single"
KIND_BOOLEAN = "boolean"
KIND_DATETIME = "datetime"
KIND_DATETIMEOFFSET = "datetimeoffset"
KIND_DATE = "date"
KIND_TIME = "time"
KIND_GUID = "guid"
KIND_BINARY = "binary"
KIND_UNKNOWN = "unknown"

# OData primitive type mappings to primitive kinds
ODATA_PRIMITIVE_TYPES = {
    "Edm.String": KIND_STRING,
    "Edm.Int16": KIND_INT16,
    "Edm.Int32": KIND_INT32,
    "Edm.Int64": KIND_INT64,
    "Edm.Byte": KIND_BYTE,
    "Edm.SByte": KIND_SBYTE,
    "Edm.Decimal": KIND_DECIMAL,
    "Edm.Double": KIND_DOUBLE,
    "Edm.Single": KIND_SINGLE,
    "Edm.Boolean": KIND_BOOLEAN,
    "Edm.DateTime": KIND_DATETIME,
    "Edm.DateTimeOffset": KIND_DATETIMEOFFSET,
    "Edm.Date": KIND_DATE,
    "Edm.Time": KIND_TIME,
    "Edm.TimeOfDay": KIND_TIME,
    "Edm.Guid": KIND_GUID,
    "Edm.Binary": KIND_BINARY,
}

INTEGER_KINDS = {KIND_INT16, KIND_INT32, KIND_INT64, KIND_BYTE, KIND_SBYTE}
NUMBER_KINDS = {KIND_DECIMAL, KIND_DOUBLE, KIND_SINGLE}

# Inclusive value ranges for the integer kinds
INTEGER_RANGES = {
    KIND_BYTE: (0, 255),
    KIND_SBYTE: (-128, 127),
    KIND_INT16: (-2 ** 15, 2 ** 15 - 1),
    KIND_INT32: (-2 ** 31, 2 ** 31 - 1),
    KIND_INT64: (-2 ** 63, 2 ** 63 - 1),
}

# JSON Schema type names per primitive kind
JSON_SCHEMA_TYPES = {
    KIND_BOOLEAN: "boolean",
    **{kind: "integer" for kind in INTEGER_KINDS},
    **{kind: "number" for kind in NUMBER_KINDS},
}

# Namespaces for OData v2 XML payloads (Atom feeds, legacy metadata)
NAMESPACES = {
    'edmx': 'http://schemas.microsoft.com/ado/2007/06/edmx',
    'edm': 'http://schemas.microsoft.com/ado/2008/09/edm',
    'm': 'http://schemas.microsoft.com/ado/2007/08/dataservices/metadata',
    'd': 'http://schemas.microsoft.com/ado/2007/08/dataservices',
    'atom': 'http://www.w3.org/2005/Atom',
    'app': 'http://www.w3.org/2007/app',
    'sap': 'http://www.sap.com/Protocols/SAPData',
}

# Namespaces of the OASIS CSDL 4.0 grammar
V4_NAMESPACES = {
    'edmx': 'http://docs.oasis-open.org/odata/ns/edmx',
    'edm': 'http://docs.oasis-open.org/odata/ns/edm',
}

# OData query options passed through as-is, in this order; $count is translated per protocol version
QUERY_OPTIONS = ("filter", "search", "select", "expand", "orderby", "top", "skip", "skiptoken")

# CSRF handshake
CSRF_HEADER = "X-CSRF-Token"
CSRF_FETCH = "Fetch"
CSRF_REQUIRED = "Required"
CSRF_TOKEN_TTL_SECONDS = 30 * 60

USER_AGENT = "OData-MCP-Bridge/1.0"
DEFAULT_TIMEOUT = 60
DEFAULT_MAX_ITEMS = 100
DEFAULT_MAX_RESPONSE_SIZE = 5 * 1024 * 1024

SERVICE_INFO_TOOL = "odata_service_info"
