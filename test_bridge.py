#!/usr/bin/env python3
"""
Tests for bridge startup and the MCP-facing tool surface.
"""

import json
import unittest
from unittest.mock import patch

import aiohttp
from mcp import types
from mcp.types import Tool

from odata_mcp_bridge import (
    BridgeConfig,
    ODataMCPBridge,
    SchemaAcquisitionError,
    SchemaParseError,
    ToolCallFailed,
)
from odata_mcp_bridge.session import HttpResponse, create_session
from metadata_samples import SERVICE_URL, V2_METADATA


def make_response(status_code=200, body=b"", headers=None):
    return HttpResponse(status_code, body, headers)


class TestInitialization(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.config = BridgeConfig(service_url=SERVICE_URL + "/", username="alice", password="secret")
        self.bridge = ODataMCPBridge(self.config)

    async def asyncTearDown(self):
        await self.bridge.close()

    async def test_session_is_authenticated(self):
        session = create_session(self.config)
        try:
            self.assertEqual(session.auth, aiohttp.BasicAuth("alice", "secret"))
            self.assertEqual(session.headers["Accept"], "application/json")
        finally:
            await session.close()

    async def test_fetches_metadata(self):
        response = make_response(200, V2_METADATA.encode("utf-8"))
        with patch.object(self.bridge.client, "send", return_value=response) as mock_send:
            await self.bridge.initialize()

        self.assertEqual(mock_send.call_args.args[:2], ("GET", f"{SERVICE_URL}/$metadata"))
        self.assertEqual(self.bridge.metadata.parse_strategy, "legacy")
        self.assertIsNotNone(self.bridge.server)
        names = [tool.name for tool in self.bridge.list_tools()]
        self.assertIn("filter_Products_for_ProductService", names)
        self.assertTrue(all(isinstance(tool, Tool) for tool in self.bridge.list_tools()))

    async def test_authentication_failure(self):
        with patch.object(self.bridge.client, "send", return_value=make_response(401, b"Unauthorized")):
            with self.assertRaises(SchemaAcquisitionError) as ctx:
                await self.bridge.initialize()
        self.assertEqual(ctx.exception.status_code, 401)

    async def test_unreachable_service(self):
        with patch.object(self.bridge.client, "send",
                          side_effect=aiohttp.ClientConnectionError("connection refused")):
            with self.assertRaises(SchemaAcquisitionError):
                await self.bridge.initialize()

    async def test_unparseable_metadata(self):
        with self.assertRaises(SchemaParseError):
            await self.bridge.initialize(document=b"<html><body>Login required</body></html>")

    def test_operations_before_initialize(self):
        with self.assertRaises(RuntimeError):
            self.bridge.operations


class TestCallTool(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        config = BridgeConfig(service_url=SERVICE_URL, tool_postfix="")
        self.bridge = await ODataMCPBridge(config).initialize(document=V2_METADATA)

    async def asyncTearDown(self):
        await self.bridge.close()

    async def test_service_info(self):
        info = await self.bridge.call_tool("odata_service_info", {})
        self.assertEqual(info["service_url"], SERVICE_URL)
        self.assertIn("Products", info["entity_sets"])

    async def test_errors_become_payloads(self):
        result = await self.bridge.call_tool("get_Suppliers", {"ID": 1})
        self.assertEqual(result["error"]["kind"], "entity_not_found")

        result = await self.bridge.call_tool("get_Products", {})
        self.assertEqual(result["error"]["kind"], "invalid_argument")

        body = json.dumps({"error": {"code": "404", "message": {"value": "Not found"}}}).encode("utf-8")
        with patch.object(self.bridge.client, "send", return_value=make_response(404, body)):
            result = await self.bridge.call_tool("get_Products", {"ID": 1})
        self.assertEqual(result["error"]["kind"], "origin_request")
        self.assertEqual(result["error"]["status_code"], 404)

    async def test_successful_call(self):
        body = json.dumps({"d": {"ID": 1, "Name": "Widget"}}).encode("utf-8")
        with patch.object(self.bridge.client, "send", return_value=make_response(200, body)):
            result = await self.bridge.call_tool("get_Products", {"ID": 1})
        self.assertEqual(result, {"ID": 1, "Name": "Widget"})


class TestMCPHandler(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        config = BridgeConfig(service_url=SERVICE_URL, tool_postfix="")
        self.bridge = await ODataMCPBridge(config).initialize(document=V2_METADATA)

    async def asyncTearDown(self):
        await self.bridge.close()

    async def call(self, name, arguments):
        handler = self.bridge.server.request_handlers[types.CallToolRequest]
        request = types.CallToolRequest(method="tools/call",
                                        params=types.CallToolRequestParams(name=name, arguments=arguments))
        return (await handler(request)).root

    async def test_handle_call_raises_error_payload(self):
        with self.assertRaises(ToolCallFailed) as ctx:
            await self.bridge.handle_call("get_Suppliers", {})
        self.assertEqual(ctx.exception.payload["error"]["kind"], "entity_not_found")
        self.assertEqual(json.loads(str(ctx.exception))["error"]["kind"], "entity_not_found")

    async def test_failed_call_is_flagged_as_error(self):
        result = await self.call("get_Suppliers", {})
        self.assertTrue(result.isError)
        self.assertEqual(json.loads(result.content[0].text)["error"]["kind"], "entity_not_found")

    async def test_successful_call_is_not_an_error(self):
        body = json.dumps({"d": {"ID": 1, "Name": "Widget"}}).encode("utf-8")
        with patch.object(self.bridge.client, "send", return_value=make_response(200, body)):
            result = await self.call("get_Products", {"ID": 1})
        self.assertFalse(result.isError)
        self.assertEqual(json.loads(result.content[0].text), {"ID": 1, "Name": "Widget"})


if __name__ == "__main__":
    unittest.main()
