from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.config import settings
from app.errors import SearchProviderError
from app.tools import brave_search, search_provider, serper_search
from app.tools.serper_search import SearchResult


class _FakeResponse:
    def __init__(self, payload: dict, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://search.test")
            response = httpx.Response(self.status_code, request=request)
            raise httpx.HTTPStatusError("upstream error", request=request, response=response)

    def json(self) -> dict:
        return self._payload


@pytest.mark.asyncio
async def test_search_provider_uses_serper_when_configured():
    fake = AsyncMock(return_value=[SearchResult(title="t", link="https://a.example", snippet="s")])
    with patch("app.tools.search_provider.settings") as mock_settings, patch.object(serper_search, "search", fake):
        mock_settings.search_provider = "serper"

        result = await search_provider.search("query", max_results=3)

    assert result.provider == "serper"
    assert result.results[0].link == "https://a.example"
    fake.assert_awaited_once_with("query", max_results=3, cancel=None)


@pytest.mark.asyncio
async def test_search_provider_uses_brave_when_configured():
    fake = AsyncMock(return_value=[])
    with patch("app.tools.search_provider.settings") as mock_settings, patch.object(brave_search, "search", fake):
        mock_settings.search_provider = "Brave"

        result = await search_provider.search("query")

    assert result.provider == "brave"
    assert result.results == []


@pytest.mark.asyncio
async def test_search_provider_raises_when_provider_unsupported():
    with patch("app.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "unknown-provider"

        with pytest.raises(ValueError):
            await search_provider.search("query")


@pytest.mark.asyncio
async def test_serper_maps_organic_results_in_rank_order(monkeypatch):
    monkeypatch.setattr(settings, "serper_api_key", "test-key")
    captured: list[dict] = []

    async def fake_post(self, url: str, **kwargs):  # noqa: ARG001
        captured.append({"url": url, **kwargs})
        return _FakeResponse(
            {
                "organic": [
                    {"title": "Paris forecast", "link": "https://weather.example/paris", "snippet": "18C, sunny", "date": "Oct 18, 2026"},
                    {"title": "Second", "link": "https://b.example", "snippet": "b"},
                    {"title": "Third", "link": "https://c.example", "snippet": "c"},
                ]
            }
        )

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)

    results = await serper_search.search("weather in paris", max_results=2)

    assert [r.title for r in results] == ["Paris forecast", "Second"]
    assert results[0].date == "Oct 18, 2026"
    assert results[1].date is None
    assert captured[0]["json"] == {"q": "weather in paris", "num": 2}
    assert captured[0]["headers"]["X-API-KEY"] == "test-key"


@pytest.mark.asyncio
async def test_serper_requires_api_key(monkeypatch):
    monkeypatch.setattr(settings, "serper_api_key", "")

    with pytest.raises(SearchProviderError) as exc_info:
        await serper_search.search("query")

    assert exc_info.value.to_payload()["kind"] == "search_failed"


@pytest.mark.asyncio
async def test_serper_http_error_becomes_search_failure(monkeypatch):
    monkeypatch.setattr(settings, "serper_api_key", "test-key")

    async def fake_post(self, url: str, **kwargs):  # noqa: ARG001
        return _FakeResponse({}, status_code=429)

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)

    with pytest.raises(SearchProviderError) as exc_info:
        await serper_search.search("query")

    assert exc_info.value.status_code == 429
    assert "HTTP 429" in str(exc_info.value)


@pytest.mark.asyncio
async def test_brave_falls_back_to_extra_snippets_and_age(monkeypatch):
    monkeypatch.setattr(settings, "brave_api_key", "brave-key")

    async def fake_get(self, url: str, **kwargs):  # noqa: ARG001
        assert kwargs["headers"]["X-Subscription-Token"] == "brave-key"
        return _FakeResponse(
            {
                "web": {
                    "results": [
                        {
                            "title": "Result",
                            "url": "https://r.example",
                            "description": "",
                            "extra_snippets": ["one", "two"],
                            "age": "2 days ago",
                        }
                    ]
                }
            }
        )

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)

    results = await brave_search.search("query")

    assert results == [SearchResult(title="Result", link="https://r.example", snippet="one two", date="2 days ago")]


def test_results_to_dicts_keeps_model_facing_shape():
    dicts = search_provider.results_to_dicts([SearchResult(title="t", link="l", snippet="s")])
    assert dicts == [{"title": "t", "link": "l", "snippet": "s", "date": None}]
