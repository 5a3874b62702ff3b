from __future__ import annotations

import threading

import httpx
import pytest

from ingestion.errors import FetchError, IngestionCancelled, RateLimitedError
from ingestion.fetchers import (
    DEFAULT_NEWS_FEEDS,
    KalshiFetcher,
    NewsAPIFetcher,
    PolymarketFetcher,
    RSSFetcher,
    build_market_fetchers,
    build_news_fetchers,
)


class RecordingTransport:
    def __init__(self, status_code: int = 200, content: bytes = b"{}", headers=None) -> None:
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, content=self.content, headers=self.headers)


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_kalshi_fetcher_sends_bearer_token(test_settings, kalshi_payload):
    transport = RecordingTransport(content=kalshi_payload)
    fetcher = KalshiFetcher(test_settings, client=_client(transport))

    assert fetcher.fetch() == kalshi_payload

    request = transport.requests[0]
    assert request.method == "GET"
    assert request.url.path == "/trade-api/v2/events"
    assert request.url.params["status"] == "open"
    assert request.url.params["limit"] == "100"
    assert request.url.params["with_nested_markets"] == "true"
    assert request.headers["Authorization"] == "Bearer test-kalshi-key"


def test_polymarket_fetcher_requests_open_events_by_volume(test_settings, polymarket_payload):
    transport = RecordingTransport(content=polymarket_payload)
    fetcher = PolymarketFetcher(test_settings, client=_client(transport))

    assert fetcher.fetch() == polymarket_payload

    request = transport.requests[0]
    assert request.url.host == "gamma-api.polymarket.com"
    assert request.url.path == "/events"
    assert dict(request.url.params) == {
        "closed": "false",
        "limit": "100",
        "order": "volume",
        "ascending": "false",
    }
    assert "Authorization" not in request.headers


def test_rss_fetcher_uses_feed_url(test_settings, rss_payload):
    transport = RecordingTransport(content=rss_payload)
    fetcher = RSSFetcher(
        "https://feeds.example.com/techcrunch.xml",
        "techcrunch",
        test_settings,
        client=_client(transport),
    )

    assert fetcher.name == "rss:techcrunch"
    assert fetcher.feed_type == "rss"
    assert fetcher.fetch() == rss_payload
    assert str(transport.requests[0].url) == "https://feeds.example.com/techcrunch.xml"


def test_newsapi_fetcher_everything_endpoint(test_settings, newsapi_payload):
    transport = RecordingTransport(content=newsapi_payload)
    fetcher = NewsAPIFetcher(test_settings, query="prediction markets", client=_client(transport))

    fetcher.fetch()

    request = transport.requests[0]
    assert request.url.path == "/v2/everything"
    assert request.url.params["apiKey"] == "test-news-key"
    assert request.url.params["q"] == "prediction markets"
    assert request.url.params["pageSize"] == "100"
    assert request.url.params["sortBy"] == "publishedAt"
    assert "category" not in request.url.params


def test_newsapi_fetcher_top_headlines_for_category(test_settings, newsapi_payload):
    transport = RecordingTransport(content=newsapi_payload)
    fetcher = NewsAPIFetcher(test_settings, query="", category="business", client=_client(transport))

    fetcher.fetch()

    request = transport.requests[0]
    assert request.url.path == "/v2/top-headlines"
    assert request.url.params["category"] == "business"
    assert "q" not in request.url.params


def test_fetcher_maps_429_to_rate_limited(test_settings):
    transport = RecordingTransport(status_code=429, headers={"Retry-After": "30"})
    fetcher = PolymarketFetcher(test_settings, client=_client(transport))

    with pytest.raises(RateLimitedError) as excinfo:
        fetcher.fetch()

    assert excinfo.value.status_code == 429
    assert excinfo.value.retry_after == "30"
    assert excinfo.value.provider == "polymarket"


def test_fetcher_maps_server_error_to_fetch_error(test_settings):
    transport = RecordingTransport(status_code=500, content=b"internal error")
    fetcher = KalshiFetcher(test_settings, client=_client(transport))

    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch()

    assert not isinstance(excinfo.value, RateLimitedError)
    assert excinfo.value.status_code == 500
    assert "kalshi" in str(excinfo.value)


def test_fetcher_maps_transport_failure_to_fetch_error(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    fetcher = RSSFetcher("https://feeds.example.com/down.xml", "down", test_settings, client=_client(handler))

    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch()

    assert excinfo.value.status_code is None
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


def test_fetcher_honours_cancellation_before_request(test_settings):
    transport = RecordingTransport()
    fetcher = PolymarketFetcher(test_settings, client=_client(transport))
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(IngestionCancelled):
        fetcher.fetch(cancel_event)

    assert transport.requests == []


def test_close_leaves_injected_client_open(test_settings):
    client = _client(RecordingTransport())
    fetcher = PolymarketFetcher(test_settings, client=client)

    fetcher.close()

    assert not client.is_closed
    client.close()


def test_build_fetchers_from_settings(test_settings):
    market_fetchers = build_market_fetchers(test_settings)
    news_fetchers = build_news_fetchers(test_settings)
    try:
        assert [fetcher.source for fetcher in market_fetchers] == ["kalshi", "polymarket"]
        assert [fetcher.name for fetcher in news_fetchers] == ["rss:techcrunch", "newsapi"]
    finally:
        for fetcher in (*market_fetchers, *news_fetchers):
            fetcher.close()


def test_build_news_fetchers_defaults_to_builtin_feeds(test_settings):
    settings = test_settings.model_copy(update={"news_feeds": {}})
    fetchers = build_news_fetchers(settings)
    try:
        rss_sources = [fetcher.source for fetcher in fetchers if fetcher.feed_type == "rss"]
        assert rss_sources == list(DEFAULT_NEWS_FEEDS)
    finally:
        for fetcher in fetchers:
            fetcher.close()
