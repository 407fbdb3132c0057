"""
OData to MCP bridge that dynamically generates MCP tools from OData metadata.
"""

import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .client import ODataClient
from .config import BridgeConfig
from .dispatcher import OperationDispatcher
from .errors import ODataBridgeError
from .metadata_fetcher import MetadataFetcher
from .metadata_parser import MetadataParser
from .models import ODataMetadata
from .normalizer import ResponseNormalizer
from .schema_generator import ToolOperation, ToolSchemaGenerator

logger = logging.getLogger(__name__)


class ToolCallFailed(Exception):
    """Raised from the MCP call handler so the result is flagged as an error.

    The message is the JSON error payload returned to the client.
    """

    def __init__(self, payload: Dict[str, Any]):
        self.payload = payload
        super().__init__(json.dumps(payload, indent=2, default=str))


class ODataMCPBridge:
    """Bridge between OData and MCP, creating tools from OData metadata."""

    def __init__(self, config: BridgeConfig, session: Optional[aiohttp.ClientSession] = None,
                 mcp_name: str = "odata-mcp"):
        self.config = config
        self.client = ODataClient(config, session=session)
        self.mcp_name = mcp_name
        self.metadata: Optional[ODataMetadata] = None
        self.dispatcher: Optional[OperationDispatcher] = None
        self.server: Optional[Server] = None

    async def initialize(self, document: Optional[bytes] = None) -> "ODataMCPBridge":
        """Fetch and parse the service metadata and build the tool catalog.

        ``document`` skips the fetch and uses the given $metadata content.
        Raises SchemaAcquisitionError or SchemaParseError.
        """
        if document is None:
            logger.debug("Fetching OData metadata...")
            document = await MetadataFetcher(self.client).fetch()

        logger.debug("Parsing OData metadata...")
        self.metadata = MetadataParser(self.config.service_url).parse(document)
        logger.debug(f"Metadata parsed with strategy '{self.metadata.parse_strategy}' "
                     f"(OData {self.metadata.odata_version}).")

        normalizer = ResponseNormalizer(
            max_items=self.config.max_items,
            legacy_dates=self.config.legacy_dates,
            response_metadata=self.config.response_metadata,
            max_response_size=self.config.max_response_size,
        )
        generator = ToolSchemaGenerator(self.metadata, self.config)
        self.dispatcher = OperationDispatcher(generator, self.client, normalizer)
        self.server = self._build_server()
        logger.info(f"Registered {len(self.dispatcher.operations)} tools for {self.config.service_url}")
        return self

    async def close(self):
        await self.client.close()

    @property
    def operations(self) -> List[ToolOperation]:
        if self.dispatcher is None:
            raise RuntimeError("Bridge is not initialized")
        return self.dispatcher.operations

    def list_tools(self) -> List[Tool]:
        return [op.to_tool() for op in self.operations]

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> Any:
        """Dispatch a tool call, turning bridge errors into an error payload."""
        try:
            return await self.dispatcher.dispatch(name, arguments)
        except ODataBridgeError as e:
            logger.debug(f"Tool {name} failed: {e.kind}: {e.message}")
            return {"error": e.to_dict()}

    async def handle_call(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
        """MCP call handler: results as JSON text, failures raised as ToolCallFailed."""
        try:
            result = await self.dispatcher.dispatch(name, arguments)
        except ODataBridgeError as e:
            logger.debug(f"Tool {name} failed: {e.kind}: {e.message}")
            raise ToolCallFailed({"error": e.to_dict()}) from e
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    def _build_server(self) -> Server:
        app = Server(self.mcp_name)

        @app.list_tools()
        async def list_tools() -> List[Tool]:
            return self.list_tools()

        # Arguments are validated against each tool's own model, which also
        # accepts query options with or without their '$' prefix.
        @app.call_tool(validate_input=False)
        async def call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
            return await self.handle_call(name, arguments)

        return app

    async def run(self):
        """Serve the tools over stdio until the client disconnects."""
        try:
            if self.server is None:
                await self.initialize()
            logger.debug("Starting MCP server on stdio...")
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(read_stream, write_stream, self.server.create_initialization_options())
        finally:
            await self.close()
