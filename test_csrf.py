#!/usr/bin/env python3
"""
Tests for the CSRF token cache and the client's token handshake.
"""

import asyncio
import unittest
from unittest.mock import patch

import aiohttp

from odata_mcp_bridge import BridgeConfig, CsrfTokenError, ODataClient, OriginRequestError
from odata_mcp_bridge.csrf import CsrfTokenCache
from odata_mcp_bridge.session import HttpResponse
from metadata_samples import SERVICE_URL


def make_response(status_code=200, body=b"", headers=None):
    return HttpResponse(status_code, body, headers)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCsrfTokenCache(unittest.IsolatedAsyncioTestCase):

    async def test_concurrent_callers_share_one_fetch(self):
        async def fetch():
            await asyncio.sleep(0.01)
            return "token-1"

        cache = CsrfTokenCache(fetch)
        tokens = await asyncio.gather(*(cache.get_or_refresh() for _ in range(10)))
        self.assertEqual(set(tokens), {"token-1"})
        self.assertEqual(cache.fetch_count, 1)

    async def test_token_expires_after_ttl(self):
        clock = FakeClock()
        issued = iter(["first", "second"])

        async def fetch():
            return next(issued)

        cache = CsrfTokenCache(fetch, ttl=60, clock=clock)
        self.assertEqual(await cache.get_or_refresh(), "first")
        clock.now += 59
        self.assertEqual(await cache.get_or_refresh(), "first")
        clock.now += 1
        self.assertIsNone(cache.token)
        self.assertEqual(await cache.get_or_refresh(), "second")
        self.assertEqual(cache.fetch_count, 2)

    async def test_missing_token_is_not_cached(self):
        async def fetch():
            return None

        cache = CsrfTokenCache(fetch)
        self.assertIsNone(await cache.get_or_refresh())
        self.assertIsNone(await cache.get_or_refresh())
        self.assertEqual(cache.fetch_count, 2)

    async def test_invalidate_keeps_newer_token(self):
        issued = iter(["old", "new"])

        async def fetch():
            return next(issued)

        cache = CsrfTokenCache(fetch)
        await cache.get_or_refresh()
        cache.invalidate("old")
        self.assertEqual(await cache.get_or_refresh(), "new")
        cache.invalidate("old")
        self.assertEqual(cache.token, "new")
        cache.invalidate()
        self.assertIsNone(cache.token)


class TestClientCsrfHandshake(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.client = ODataClient(BridgeConfig(service_url=SERVICE_URL))

    def route(self, heads, responses):
        """Answer HEAD token requests from ``heads`` and everything else from ``responses``."""
        heads, responses = iter(heads), iter(responses)

        async def send(method, url, headers=None, json_body=None):
            source = heads if method == "HEAD" else responses
            item = next(source)
            if isinstance(item, Exception):
                raise item
            return item

        return patch.object(self.client, "send", side_effect=send)

    @staticmethod
    def calls(mock_send, head=False):
        return [call for call in mock_send.call_args_list if (call.args[0] == "HEAD") == head]

    async def test_token_sent_on_mutating_request(self):
        head = make_response(200, headers={"X-CSRF-Token": "abc123"})
        created = make_response(201, b'{"d": {"ID": 1}}', {"Content-Type": "application/json"})
        with self.route([head], [created]) as mock_send:
            response = await self.client.request("POST", "Products", json_body={"ID": 1}, csrf=True)

        self.assertEqual(response.status_code, 201)
        head_call, = self.calls(mock_send, head=True)
        self.assertEqual(head_call.args[1], SERVICE_URL)
        self.assertEqual(head_call.kwargs["headers"], {"X-CSRF-Token": "Fetch"})
        post_call, = self.calls(mock_send)
        self.assertEqual(post_call.kwargs["headers"], {"X-CSRF-Token": "abc123"})

    async def test_no_token_for_reads(self):
        ok = make_response(200, b'{"d": {"results": []}}')
        with self.route([], [ok]) as mock_send:
            await self.client.request("GET", "Products")
        self.assertEqual(self.calls(mock_send, head=True), [])

    async def test_stale_token_is_refreshed_once(self):
        heads = [make_response(200, headers={"X-CSRF-Token": "stale"}),
                 make_response(200, headers={"X-CSRF-Token": "fresh"})]
        responses = [make_response(403, b"CSRF token validation failed", {"X-CSRF-Token": "Required"}),
                     make_response(204)]
        with self.route(heads, responses) as mock_send:
            response = await self.client.request("DELETE", "Products(1)", csrf=True)

        self.assertEqual(response.status_code, 204)
        sent = [call.kwargs["headers"]["X-CSRF-Token"] for call in self.calls(mock_send)]
        self.assertEqual(sent, ["stale", "fresh"])
        self.assertEqual(self.client.csrf.token, "fresh")

    async def test_second_rejection_raises(self):
        heads = [make_response(200, headers={"X-CSRF-Token": "one"}),
                 make_response(200, headers={"X-CSRF-Token": "two"})]
        rejected = make_response(403, b"", {"X-CSRF-Token": "Required"})
        with self.route(heads, [rejected, rejected]) as mock_send:
            with self.assertRaises(CsrfTokenError) as ctx:
                await self.client.request("POST", "Products", json_body={}, csrf=True)

        self.assertEqual(len(self.calls(mock_send)), 2)
        self.assertEqual(ctx.exception.to_dict()["kind"], "csrf_token")
        self.assertIsNone(self.client.csrf.token)

    async def test_token_fetch_failure_raises(self):
        with self.route([aiohttp.ClientConnectionError("refused")], []) as mock_send:
            with self.assertRaises(CsrfTokenError):
                await self.client.request("POST", "Products", json_body={}, csrf=True)
        self.assertEqual(self.calls(mock_send), [])

    async def test_service_without_tokens(self):
        head = make_response(200)
        created = make_response(201, b'{"d": {"ID": 1}}')
        with self.route([head], [created]) as mock_send:
            await self.client.request("POST", "Products", json_body={"ID": 1}, csrf=True)
        self.assertEqual(self.calls(mock_send)[0].kwargs["headers"], {})
        self.assertIsNone(self.client.csrf.token)

    async def test_plain_forbidden_is_an_origin_error(self):
        head = make_response(200, headers={"X-CSRF-Token": "abc"})
        forbidden = make_response(403, b'{"error": {"code": "AUTH", "message": {"value": "Not authorized"}}}')
        with self.route([head], [forbidden]) as mock_send:
            with self.assertRaises(OriginRequestError) as ctx:
                await self.client.request("POST", "Products", json_body={}, csrf=True)
        self.assertEqual(len(self.calls(mock_send)), 1)
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertIn("Not authorized", ctx.exception.message)


if __name__ == "__main__":
    unittest.main()
