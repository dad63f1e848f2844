import pytest
import respx
from httpx import Response

from harness.llm import ResponsesClient
from harness.tavily import TavilyClient
from harness.web_search import WebSearchTool
from tests.fakes import FakeResponsesClient


@pytest.mark.asyncio
async def test_tavily_backend_maps_results_and_caps_top_k():
    tavily = TavilyClient("test-key")
    tool = WebSearchTool(FakeResponsesClient(), tavily, backend="auto")
    results = [
        {"url": f"https://example.com/{i}", "title": f"T{i}", "content": f"snippet {i}"} for i in range(5)
    ]
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.tavily.com/search").mock(
                return_value=Response(200, json={"answer": "short answer", "results": results})
            )
            result = await tool.search("query", top_k=3)
    finally:
        await tavily.close()

    assert tool.use_tavily is True
    assert result.error is None
    assert result.summary == "short answer"
    assert [e.url for e in result.evidence] == [f"https://example.com/{i}" for i in range(3)]
    assert result.evidence[0].snippet == "snippet 0"
    assert all(e.id.startswith("web_") for e in result.evidence)
    assert len({e.id for e in result.evidence}) == 3
    assert result.model is None


@pytest.mark.asyncio
async def test_tavily_error_is_returned_as_data():
    tavily = TavilyClient("test-key")
    tool = WebSearchTool(FakeResponsesClient(), tavily, backend="tavily")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.tavily.com/search").mock(return_value=Response(429, text="slow down"))
            result = await tool.search("query")
    finally:
        await tavily.close()
    assert result.evidence == []
    assert result.error.startswith("http_status (429)")


@pytest.mark.asyncio
async def test_hosted_backend_used_without_tavily_key():
    fake = FakeResponsesClient()
    tool = WebSearchTool(fake, TavilyClient(None), backend="auto", search_model="gpt-5-mini")
    result = await tool.search("query")
    await tool.tavily.close()

    assert tool.use_tavily is False
    assert fake.web_search_calls == ["query"]
    assert [e.url for e in result.evidence] == ["https://example.com/a"]
    assert result.summary == "Results for query"
    assert result.model == "gpt-5-mini"
    assert result.usage["total_tokens"] == 120


@pytest.mark.asyncio
async def test_hosted_backend_http_failure_is_absorbed():
    llm = ResponsesClient("sk-test", "http://llm.test/v1")
    tool = WebSearchTool(llm, None, backend="openai")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("http://llm.test/v1/responses").mock(return_value=Response(503, text="down"))
            result = await tool.search("query")
    finally:
        await llm.close()
    assert result.evidence == []
    assert "503" in result.error


@pytest.mark.asyncio
async def test_tavily_searches_are_not_billed_at_hosted_rate(ctx_factory):
    tavily = TavilyClient("test-key")
    tool = WebSearchTool(FakeResponsesClient(), tavily, backend="tavily")
    ctx = ctx_factory(web_search=tool)
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.tavily.com/search").mock(
                return_value=Response(200, json={"results": [{"url": "https://a.test", "content": "x"}]})
            )
            result = await ctx.web_search("q")
    finally:
        await tavily.close()

    assert result.billed_tool == "tavily"
    summary = ctx.cost_summary()
    assert summary.totals.tool_calls == {"tavily": 1}
    assert summary.totals.cost_usd is None
    assert summary.priced is False
    assert summary.missing_pricing_for == ["tool:tavily"]


@pytest.mark.asyncio
async def test_hosted_search_is_billed_as_web_search(ctx_factory):
    fake = FakeResponsesClient()
    tool = WebSearchTool(fake, None, backend="openai", search_model="gpt-5-mini")
    ctx = ctx_factory(fake_llm=fake, web_search=tool)
    await ctx.web_search("q")
    summary = ctx.cost_summary()
    assert summary.totals.tool_calls == {"web_search": 1}
    assert summary.priced is True
    assert summary.totals.tool_cost_usd == pytest.approx(0.01)


@pytest.mark.asyncio
async def test_failed_search_is_not_billed(ctx_factory):
    tavily = TavilyClient("test-key")
    tool = WebSearchTool(FakeResponsesClient(), tavily, backend="tavily")
    ctx = ctx_factory(web_search=tool)
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.tavily.com/search").mock(return_value=Response(500, text="down"))
            result = await ctx.web_search("q")
    finally:
        await tavily.close()
    assert result.billed_tool is None
    assert ctx.cost_summary().totals.web_search_calls == 0


@pytest.mark.asyncio
async def test_non_json_bodies_become_errors_for_both_backends():
    llm = ResponsesClient("sk-test", "http://llm.test/v1")
    tavily = TavilyClient("test-key")
    hosted = WebSearchTool(llm, None, backend="openai")
    via_tavily = WebSearchTool(llm, tavily, backend="tavily")
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("http://llm.test/v1/responses").mock(
                return_value=Response(200, text="<html>bad gateway</html>")
            )
            respx_mock.post("https://api.tavily.com/search").mock(
                return_value=Response(200, text="<html>bad gateway</html>")
            )
            hosted_result = await hosted.search("q")
            tavily_result = await via_tavily.search("q")
    finally:
        await llm.close()
        await tavily.close()

    assert hosted_result.evidence == []
    assert hosted_result.error
    assert hosted_result.billed_tool is None
    assert tavily_result.evidence == []
    assert tavily_result.error.startswith("invalid_json")
