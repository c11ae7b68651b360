"""Tests for Google Custom Search ranking and the HTTP provider."""

import httpx
import pytest

from grounded_agent.search import GoogleCustomSearchProvider, create_search_provider, rank_results
from grounded_agent.types import SearchConfig, SearchResult


def _r(url: str, title: str = "t") -> SearchResult:
    return SearchResult(title=title, url=url, snippet="")


class TestRankResults:
    def test_excluded_and_non_http_dropped(self):
        results = [
            _r("https://accounts.google.com/login"),
            _r("ftp://files.example/x"),
            _r("https://ads.example.com/promo"),
            _r("https://site.example/a"),
        ]
        ranked = rank_results(results, ["accounts.google.com", "ads."], [], 10)
        assert [r.url for r in ranked] == ["https://site.example/a"]

    def test_priority_then_social_then_rest(self):
        results = [
            _r("https://plain.example/a"),
            _r("https://twitter.com/someone/status/1"),
            _r("https://www.city.go.jp/info"),
            _r("https://other.example/b"),
        ]
        ranked = rank_results(results, [], [".go.jp"], 10)
        assert [r.url for r in ranked] == [
            "https://www.city.go.jp/info",
            "https://twitter.com/someone/status/1",
            "https://plain.example/a",
            "https://other.example/b",
        ]

    def test_one_per_domain_and_cap(self):
        results = [
            _r("https://a.example/1"),
            _r("https://www.a.example/2"),
            _r("https://b.example/1"),
            _r("https://c.example/1"),
        ]
        ranked = rank_results(results, [], [], 2)
        assert [r.url for r in ranked] == ["https://a.example/1", "https://b.example/1"]


def _provider(handler, **config) -> GoogleCustomSearchProvider:
    return GoogleCustomSearchProvider(
        SearchConfig(**config),
        api_key="key",
        cse_id="cse",
        transport=httpx.MockTransport(handler),
    )


def _items(*urls):
    return {"items": [{"title": f"title {i}", "link": u, "snippet": f"snippet {i}"} for i, u in enumerate(urls)]}


class TestGoogleCustomSearchProvider:
    @pytest.mark.asyncio
    async def test_search(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=_items("https://a.example/", "https://b.example/"))

        results = await _provider(handler, language="ja").search("ramen", 3)
        assert [r.title for r in results] == ["title 0", "title 1"]
        assert results[0].snippet == "snippet 0"
        params = seen[0].url.params
        assert params["q"] == "ramen"
        assert params["cx"] == "cse"
        assert params["num"] == "10"
        assert params["lr"] == "lang_ja"

    @pytest.mark.asyncio
    async def test_not_configured(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_CSE_ID", raising=False)
        provider = GoogleCustomSearchProvider(SearchConfig())
        assert not provider.is_configured()
        assert await provider.search("anything") == []

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403, json={"error": {"message": "forbidden"}})

        assert await _provider(handler).search("q") == []
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_server_error_retried(self, monkeypatch):
        monkeypatch.setattr("grounded_agent.search.google.RETRY_BASE_SECONDS", 0)
        responses = [httpx.Response(500), httpx.Response(200, json=_items("https://a.example/"))]

        def handler(request):
            return responses.pop(0)

        results = await _provider(handler).search("q")
        assert [r.url for r in results] == ["https://a.example/"]

    @pytest.mark.asyncio
    async def test_all_attempts_fail(self, monkeypatch):
        monkeypatch.setattr("grounded_agent.search.google.RETRY_BASE_SECONDS", 0)
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectTimeout("slow")

        assert await _provider(handler).search("q") == []
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_no_items(self):
        assert await _provider(lambda request: httpx.Response(200, json={})).search("q") == []


def test_factory():
    assert isinstance(create_search_provider(SearchConfig()), GoogleCustomSearchProvider)
    with pytest.raises(ValueError):
        create_search_provider(SearchConfig(provider="bing"))


def test_format_results():
    provider = GoogleCustomSearchProvider(SearchConfig(), api_key="k", cse_id="c")
    text = provider.format_results([SearchResult(title="A", url="https://a.example", snippet="about a")])
    assert text.startswith("1. A\nURL: https://a.example\nabout a")
    assert provider.format_results([]) == ""
