import json

import httpx
import pytest

from labwatch.clients.tavily import (
    TavilyClient,
    TavilyError,
    TavilyRateLimitError,
    TavilySchemaError,
    TavilyServerError,
)


def _client(handler, **kwargs) -> TavilyClient:
    http_client = httpx.Client(transport=httpx.MockTransport(handler), base_url="https://api.tavily.com")
    return TavilyClient("test-key", http_client=http_client, sleep=lambda _: None, **kwargs)


def test_search_sends_payload_and_parses_hits():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "title": " Periodic Labs raises $300M ",
                        "url": "https://techcrunch.com/periodic",
                        "content": "AI research lab",
                        "published_date": "2025-09-30",
                    },
                    {"title": "no url"},
                    "garbage",
                ]
            },
        )

    hits = _client(handler).search(
        query="ai lab", max_results=3, days=7, include_domains=["techcrunch.com"]
    )
    assert captured["auth"] == "Bearer test-key"
    assert captured["body"]["query"] == "ai lab"
    assert captured["body"]["days"] == 7
    assert captured["body"]["include_domains"] == ["techcrunch.com"]
    assert len(hits) == 1
    assert hits[0].title == "Periodic Labs raises $300M"
    assert hits[0].snippet == "AI research lab"
    assert hits[0].published_at is not None


def test_search_retries_once_on_server_error():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503)
        return httpx.Response(200, json={"results": []})

    assert _client(handler).search(query="ai lab") == []
    assert len(calls) == 2


def test_search_gives_up_after_max_attempts():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429)

    with pytest.raises(TavilyRateLimitError):
        _client(handler).search(query="ai lab")


def test_client_errors_are_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"detail": "invalid key"})

    with pytest.raises(TavilyError) as exc_info:
        _client(handler).search(query="ai lab")
    assert exc_info.value.code == "TAVILY_401"
    assert "invalid key" in str(exc_info.value)
    assert len(calls) == 1


def test_missing_results_is_schema_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"answer": "x"})

    with pytest.raises(TavilySchemaError):
        _client(handler).search(query="ai lab")


def test_server_error_code():
    assert TavilyServerError(502).code == "TAVILY_5XX"


def test_requires_api_key_and_positive_results():
    with pytest.raises(ValueError):
        TavilyClient("")
    with pytest.raises(ValueError):
        _client(lambda request: httpx.Response(200)).search(query="x", max_results=0)
