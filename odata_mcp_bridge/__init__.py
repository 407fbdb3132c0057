"""
OData MCP Bridge - exposes OData v2/v4 services as MCP tools.
"""

from .models import (
    EntityProperty,
    EntityType,
    EntitySet,
    FunctionImport,
    ODataMetadata
)
from .config import BridgeConfig
from .errors import (
    ODataBridgeError,
    SchemaAcquisitionError,
    SchemaParseError,
    ToolNotFoundError,
    EntityNotFoundError,
    InvalidArgumentError,
    OriginRequestError,
    CsrfTokenError
)
from .metadata_parser import MetadataParser
from .schema_generator import ToolOperation, ToolSchemaGenerator
from .client import ODataClient
from .dispatcher import OperationDispatcher
from .bridge import ODataMCPBridge, ToolCallFailed

__all__ = [
    'EntityProperty',
    'EntityType',
    'EntitySet',
    'FunctionImport',
    'ODataMetadata',
    'BridgeConfig',
    'ODataBridgeError',
    'SchemaAcquisitionError',
    'SchemaParseError',
    'ToolNotFoundError',
    'EntityNotFoundError',
    'InvalidArgumentError',
    'OriginRequestError',
    'CsrfTokenError',
    'MetadataParser',
    'ToolOperation',
    'ToolSchemaGenerator',
    'ODataClient',
    'OperationDispatcher',
    'ODataMCPBridge',
    'ToolCallFailed'
]
