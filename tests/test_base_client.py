"""
Tests for the shared upstream client policy against a local aiohttp server.
"""

import asyncio
from unittest.mock import patch

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from gallery.config import Settings
from gallery.entities import Chain
from gallery.errors import NotFoundError, RateLimitedError, UpstreamError, UpstreamTimeoutError
from gallery.services.base_client import BaseAPIClient
from gallery.services.rpc_service import RPCService


class Upstream:
    """Canned upstream: answers with ``responses`` in order, repeating the last."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.hits = 0

    async def handler(self, request):
        index = min(self.hits, len(self.responses) - 1)
        self.hits += 1
        status, body = self.responses[index]
        if status == "sleep":
            await asyncio.sleep(body)
            return web.json_response({})
        if isinstance(body, (dict, list)):
            return web.json_response(body, status=status)
        return web.Response(status=status, text=body)


@pytest.fixture
async def serve():
    servers = []

    async def _serve(upstream: Upstream) -> str:
        app = web.Application()
        app.router.add_route("*", "/data", upstream.handler)
        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return str(server.make_url("/data"))

    yield _serve
    for server in servers:
        await server.close()


@pytest.fixture
async def client():
    async with aiohttp.ClientSession() as session:
        yield BaseAPIClient(session, timeout=1, max_retries=2, backoff=0, max_backoff=0)


class TestRetryPolicy:
    async def test_success(self, serve, client):
        upstream = Upstream((200, {"ok": True}))
        assert await client.get(await serve(upstream)) == {"ok": True}
        assert upstream.hits == 1

    async def test_retries_5xx_then_succeeds(self, serve, client):
        upstream = Upstream((503, "busy"), (500, "boom"), (200, {"ok": 1}))
        assert await client.get(await serve(upstream)) == {"ok": 1}
        assert upstream.hits == 3

    async def test_persistent_5xx_raises_upstream(self, serve, client):
        upstream = Upstream((502, "bad gateway"))
        with pytest.raises(UpstreamError) as info:
            await client.get(await serve(upstream))
        assert info.value.upstream_status == 502
        assert upstream.hits == 3

    async def test_4xx_not_retried(self, serve, client):
        upstream = Upstream((400, "bad request"))
        with pytest.raises(UpstreamError) as info:
            await client.get(await serve(upstream))
        assert info.value.upstream_status == 400
        assert upstream.hits == 1

    async def test_404_is_not_found(self, serve, client):
        upstream = Upstream((404, "missing"))
        with pytest.raises(NotFoundError):
            await client.get(await serve(upstream))
        assert upstream.hits == 1

    async def test_429_retried_then_rate_limited(self, serve, client):
        upstream = Upstream((429, "slow down"))
        with pytest.raises(RateLimitedError) as info:
            await client.get(await serve(upstream))
        assert info.value.status_code == 500
        assert upstream.hits == 3

    async def test_malformed_json(self, serve, client):
        upstream = Upstream((200, "<html>not json</html>"))
        with pytest.raises(UpstreamError) as info:
            await client.get(await serve(upstream))
        assert "malformed" in info.value.message
        assert upstream.hits == 1

    async def test_timeout(self, serve):
        upstream = Upstream(("sleep", 0.5))
        async with aiohttp.ClientSession() as session:
            fast = BaseAPIClient(session, timeout=0.1, max_retries=1, backoff=0, max_backoff=0)
            with pytest.raises(UpstreamTimeoutError):
                await fast.get(await serve(upstream))
        assert upstream.hits == 2


def test_backoff_is_capped():
    client = BaseAPIClient(backoff=1.0, max_backoff=3.0)
    assert [client.backoff_delay(a) for a in range(4)] == [1.0, 2.0, 3.0, 3.0]


class TestRPCErrorPassThrough:
    async def test_json_rpc_error_body_is_forwarded(self, serve, test_settings):
        reply = {"jsonrpc": "2.0", "id": 4, "error": {"code": -32602, "message": "invalid params"}}
        url = await serve(Upstream((400, reply)))
        async with aiohttp.ClientSession() as session:
            service = RPCService(session, test_settings)
            with patch.object(Settings, "alchemy_rpc_url", return_value=url):
                status, payload = await service.forward_or_error(Chain.OPTIMISM, {"jsonrpc": "2.0", "id": 4})
        assert status == 400
        assert payload == reply

    async def test_plain_4xx_still_wrapped(self, serve, test_settings):
        url = await serve(Upstream((403, "forbidden")))
        async with aiohttp.ClientSession() as session:
            service = RPCService(session, test_settings)
            with patch.object(Settings, "alchemy_rpc_url", return_value=url):
                status, payload = await service.forward_or_error(Chain.OPTIMISM, {"jsonrpc": "2.0", "id": 5})
        assert status == 502
        assert payload["id"] == 5
        assert payload["error"]["code"] == -32603
        assert payload["error"]["data"]["status"] == 403
