import json

import pytest
import respx
from httpx import Response

from harness.tavily import TavilyClient


@pytest.mark.asyncio
async def test_tavily_search_payload_and_headers():
    client = TavilyClient("test-key")
    captured = {}
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            def handler(request):
                captured["json"] = json.loads(request.content.decode("utf-8"))
                captured["headers"] = request.headers
                return Response(200, json={"results": []})

            respx_mock.post("https://api.tavily.com/search").mock(side_effect=handler)
            resp = await client.search("hello", search_depth="basic", max_results=3)
            assert resp == {"results": []}
            assert captured["json"]["api_key"] == "test-key"
            assert captured["json"]["max_results"] == 3
            assert captured["json"]["include_answer"] is True
            assert captured["headers"]["X-API-Key"] == "test-key"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_tavily_search_handles_http_error():
    client = TavilyClient("test-key")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.tavily.com/search").mock(
                return_value=Response(500, json={"error": "boom"})
            )
            resp = await client.search("hello")
            assert resp["error"] == "http_status"
            assert resp["status_code"] == 500
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_tavily_without_key_reports_missing_key():
    client = TavilyClient(None)
    try:
        assert client.enabled is False
        assert await client.search("hello") == {"error": "missing_api_key"}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_tavily_non_json_body_is_reported_as_data():
    client = TavilyClient("test-key")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.tavily.com/search").mock(
                return_value=Response(200, text="<html>bad gateway</html>")
            )
            resp = await client.search("hello")
            assert resp["error"] == "invalid_json"
            assert "bad gateway" in resp["detail"]
    finally:
        await client.close()
