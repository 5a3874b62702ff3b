from __future__ import annotations

import threading
from typing import Any, Protocol

import httpx
from loguru import logger

from app.core.config import Settings
from app.models import MarketSource

from .errors import FetchError, IngestionCancelled, RateLimitedError


USER_AGENT = "market-news-ingestion/0.1"

DEFAULT_NEWS_FEEDS: dict[str, str] = {
    "reuters-business": "https://www.reutersagency.com/feed/?taxonomy=best-topics&post_type=best",
    "bbc-news": "http://feeds.bbci.co.uk/news/rss.xml",
    "techcrunch": "https://techcrunch.com/feed/",
    "hacker-news": "https://news.ycombinator.com/rss",
    "financial-times": "https://www.ft.com/?format=rss",
    "economist": "https://www.economist.com/finance-and-economics/rss.xml",
    "coindesk": "https://www.coindesk.com/arc/outboundfeeds/rss/",
    "bloomberg-crypto": "https://www.bloomberg.com/crypto/rss.xml",
}

_SECRET_PARAMS = {"apikey", "api_key", "token"}


class Fetcher(Protocol):
    """Retrieves one raw payload from an external endpoint without parsing it."""

    name: str

    def fetch(self, cancel_event: threading.Event | None = None) -> bytes: ...

    def close(self) -> None: ...


class MarketFetcher(Fetcher, Protocol):
    source: str


class NewsFetcher(Fetcher, Protocol):
    source: str
    feed_type: str


def _raise_if_cancelled(cancel_event: threading.Event | None, provider: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise IngestionCancelled(f"{provider}: fetch cancelled")


def _loggable_params(params: dict[str, Any] | None) -> dict[str, Any]:
    if not params:
        return {}
    return {key: value for key, value in params.items() if key.lower() not in _SECRET_PARAMS}


def _get_bytes(
    client: httpx.Client,
    url: str,
    *,
    provider: str,
    cancel_event: threading.Event | None,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> bytes:
    """Issue one GET and return the body, mapping failures onto ``FetchError``."""

    _raise_if_cancelled(cancel_event, provider)
    logger.debug("{} GET {} params={}", provider, url, _loggable_params(params))

    chunks: list[bytes] = []
    try:
        with client.stream("GET", url, params=params, headers=headers) as response:
            if response.status_code == 429:
                raise RateLimitedError(provider, retry_after=response.headers.get("Retry-After"))
            if not response.is_success:
                raise FetchError(
                    provider,
                    f"unexpected status {response.status_code}",
                    status_code=response.status_code,
                )
            for chunk in response.iter_bytes():
                _raise_if_cancelled(cancel_event, provider)
                chunks.append(chunk)
    except httpx.TransportError as exc:
        raise FetchError(provider, f"request failed: {exc.__class__.__name__}: {exc}") from exc

    return b"".join(chunks)


class KalshiFetcher:
    """Open Kalshi events with their nested markets."""

    name = MarketSource.KALSHI.value
    source = MarketSource.KALSHI.value

    def __init__(self, settings: Settings, *, client: httpx.Client | None = None) -> None:
        self.api_key = settings.kalshi_api_key
        self.base_url = str(settings.kalshi_api_url).rstrip("/")
        self.timeout = settings.request_timeout
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=self.timeout)

    def fetch(self, cancel_event: threading.Event | None = None) -> bytes:
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return _get_bytes(
            self.client,
            f"{self.base_url}/events",
            provider=self.name,
            cancel_event=cancel_event,
            params={"status": "open", "limit": 100, "with_nested_markets": "true"},
            headers=headers,
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "KalshiFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class PolymarketFetcher:
    """Active Polymarket events ordered by volume; public endpoint, no credential."""

    name = MarketSource.POLYMARKET.value
    source = MarketSource.POLYMARKET.value

    def __init__(self, settings: Settings, *, client: httpx.Client | None = None) -> None:
        self.base_url = str(settings.polymarket_api_url).rstrip("/")
        self.timeout = settings.request_timeout
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=self.timeout)

    def fetch(self, cancel_event: threading.Event | None = None) -> bytes:
        return _get_bytes(
            self.client,
            f"{self.base_url}/events",
            provider=self.name,
            cancel_event=cancel_event,
            params={
                "closed": "false",
                "limit": 100,
                "order": "volume",
                "ascending": "false",
            },
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def __enter__(self) -> "PolymarketFetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class RSSFetcher:
    feed_type = "rss"

    def __init__(
        self,
        feed_url: str,
        source: str,
        settings: Settings,
        *,
        client: httpx.Client | None = None,
    ) -> None:
        self.feed_url = feed_url
        self.source = source
        self.name = f"rss:{source}"
        self.timeout = settings.request_timeout
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=self.timeout, follow_redirects=True)

    def fetch(self, cancel_event: threading.Event | None = None) -> bytes:
        return _get_bytes(
            self.client,
            self.feed_url,
            provider=self.name,
            cancel_event=cancel_event,
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/rss+xml, application/xml, text/xml",
            },
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


class NewsAPIFetcher:
    """NewsAPI.org search (``/everything``) or category headlines (``/top-headlines``)."""

    name = "newsapi"
    source = "newsapi"
    feed_type = "api"

    def __init__(
        self,
        settings: Settings,
        *,
        query: str | None = None,
        category: str | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = settings.news_api_key
        self.base_url = str(settings.newsapi_url).rstrip("/")
        self.query = settings.newsapi_query if query is None else query
        self.category = settings.newsapi_category if category is None else category
        self.timeout = settings.request_timeout
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=self.timeout)

    def _build_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"apiKey": self.api_key or ""}
        if self.query:
            params["q"] = self.query
        if self.category:
            params["category"] = self.category
        params["pageSize"] = 100
        params["sortBy"] = "publishedAt"
        return params

    def fetch(self, cancel_event: threading.Event | None = None) -> bytes:
        endpoint = "top-headlines" if self.category else "everything"
        return _get_bytes(
            self.client,
            f"{self.base_url}/{endpoint}",
            provider=self.name,
            cancel_event=cancel_event,
            params=self._build_params(),
            headers={"Accept": "application/json", "User-Agent": USER_AGENT},
        )

    def close(self) -> None:
        if self._owns_client:
            self.client.close()


def build_market_fetchers(settings: Settings) -> list[MarketFetcher]:
    """Every market provider; the pipeline skips those lacking a credential."""

    return [KalshiFetcher(settings), PolymarketFetcher(settings)]


def build_news_fetchers(settings: Settings) -> list[NewsFetcher]:
    feeds = settings.news_feeds or DEFAULT_NEWS_FEEDS
    fetchers: list[NewsFetcher] = [
        RSSFetcher(feed_url, source, settings) for source, feed_url in feeds.items()
    ]
    fetchers.append(NewsAPIFetcher(settings))
    return fetchers
