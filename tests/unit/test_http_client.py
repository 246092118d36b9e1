"""Unit tests for HTTP client wrapper."""

import pytest
import httpx

from review_monitor.fetcher.http_client import AsyncHTTPClient


class TestAsyncHTTPClient:

    @pytest.mark.asyncio
    async def test_initialization_with_defaults(self):
        async with AsyncHTTPClient() as client:
            assert client.connect_timeout == 5.0
            assert client.read_timeout == 60.0

    @pytest.mark.asyncio
    async def test_context_manager_lifecycle(self):
        client = AsyncHTTPClient()

        async with client:
            assert client._client is not None

        assert client._client is None

    @pytest.mark.asyncio
    async def test_request_outside_context_raises(self):
        client = AsyncHTTPClient()

        with pytest.raises(RuntimeError, match="not initialized"):
            await client.get("http://test.com/api")

    @pytest.mark.asyncio
    async def test_base_url_and_headers_applied(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"status": "ok"})

        async with AsyncHTTPClient(
            base_url="http://apify.test",
            headers={"Authorization": "Bearer token"},
            transport=httpx.MockTransport(handler),
        ) as client:
            response = await client.get("/acts/x/runs/1", params={"format": "json"})

        assert response.status_code == 200
        assert seen["url"] == "http://apify.test/acts/x/runs/1?format=json"
        assert seen["auth"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_post_sends_json_body(self):
        def handler(request):
            return httpx.Response(200, content=request.content)

        async with AsyncHTTPClient(transport=httpx.MockTransport(handler)) as client:
            response = await client.post("http://test.com/hook", json={"review": {"id": "R1"}})

        assert response.json() == {"review": {"id": "R1"}}

    @pytest.mark.asyncio
    async def test_timeout_configuration_applied(self):
        async with AsyncHTTPClient(connect_timeout=3.0, read_timeout=10.0) as client:
            timeout = client._client.timeout
            assert timeout.connect == 3.0
            assert timeout.read == 10.0
