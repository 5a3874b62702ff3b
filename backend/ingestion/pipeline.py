from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any

from loguru import logger

from app.core.config import Settings
from app.domain import NormalizedMarket, NormalizedNewsArticle
from app.repositories import IngestionStore

from .errors import IngestionCancelled, MaxRetriesExceededError, NormalizationError, PersistError
from .fetchers import Fetcher, MarketFetcher, NewsFetcher, build_market_fetchers, build_news_fetchers
from .normalize import (
    normalize_kalshi_markets,
    normalize_newsapi_articles,
    normalize_polymarket_markets,
    normalize_rss_news,
)
from .persister import Persister
from .retry import Retrier


MARKET_NORMALIZERS: dict[str, Callable[[bytes], list[NormalizedMarket]]] = {
    "kalshi": normalize_kalshi_markets,
    "polymarket": normalize_polymarket_markets,
}

NEWS_NORMALIZERS: dict[str, Callable[[bytes, str], list[NormalizedNewsArticle]]] = {
    "rss": normalize_rss_news,
    "api": normalize_newsapi_articles,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class SourceResult:
    name: str
    status: str
    count: int = 0
    duplicates: int = 0
    failed_records: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "count": self.count,
            "duplicates": self.duplicates,
            "failed_records": self.failed_records,
            "error": self.error,
        }


@dataclass(slots=True)
class IngestionReport:
    kind: str
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None
    markets: list[SourceResult] = field(default_factory=list)
    news: list[SourceResult] = field(default_factory=list)
    news_deleted: int = 0
    cleanup_error: str | None = None

    @property
    def total_markets(self) -> int:
        return sum(result.count for result in self.markets)

    @property
    def total_articles(self) -> int:
        return sum(result.count for result in self.news)

    @property
    def failed_sources(self) -> list[str]:
        return [result.name for result in (*self.markets, *self.news) if result.status == "failed"]

    @property
    def skipped_sources(self) -> list[str]:
        return [result.name for result in (*self.markets, *self.news) if result.status == "skipped"]

    def finish(self) -> "IngestionReport":
        self.finished_at = _utcnow()
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "total_markets": self.total_markets,
            "total_articles": self.total_articles,
            "news_deleted": self.news_deleted,
            "cleanup_error": self.cleanup_error,
            "failed_sources": self.failed_sources,
            "skipped": self.skipped_sources,
            "markets": [result.to_dict() for result in self.markets],
            "news": [result.to_dict() for result in self.news],
        }


class IngestionPipeline:
    """Fetch → retry → normalize → persist for every configured provider.

    Providers run one at a time. A failure in one provider is logged and
    recorded in the report; it never stops the remaining providers. Only
    cancellation escapes a run.
    """

    def __init__(
        self,
        settings: Settings,
        store: IngestionStore,
        *,
        market_fetchers: Sequence[MarketFetcher] | None = None,
        news_fetchers: Sequence[NewsFetcher] | None = None,
        retrier: Retrier | None = None,
    ) -> None:
        self.settings = settings
        self.persister = Persister(store)
        self.retrier = retrier or Retrier(settings.max_retries, settings.retry_backoff_seconds)
        self.market_fetchers = (
            list(market_fetchers) if market_fetchers is not None else build_market_fetchers(settings)
        )
        self.news_fetchers = (
            list(news_fetchers) if news_fetchers is not None else build_news_fetchers(settings)
        )

        for fetcher in self.market_fetchers:
            if fetcher.source not in MARKET_NORMALIZERS:
                raise ValueError(f"No market normalizer registered for source {fetcher.source!r}")
        for fetcher in self.news_fetchers:
            if fetcher.feed_type not in NEWS_NORMALIZERS:
                raise ValueError(f"No news normalizer registered for feed type {fetcher.feed_type!r}")

        disabled = settings.disabled_market_providers() + settings.disabled_news_providers()
        if disabled:
            logger.warning(
                "Ingestion providers disabled because their API key is not configured: {}",
                ", ".join(disabled),
            )

    # ------------------------------------------------------------------
    # Runs

    def run_market_ingestion(self, cancel_event: threading.Event | None = None) -> IngestionReport:
        logger.info("Starting market ingestion pipeline...")
        report = IngestionReport(kind="markets")
        self._ingest_markets(report, cancel_event)
        logger.info("Market ingestion complete: {} total markets", report.total_markets)
        return report.finish()

    def run_news_ingestion(self, cancel_event: threading.Event | None = None) -> IngestionReport:
        logger.info("Starting news ingestion pipeline...")
        report = IngestionReport(kind="news")
        self._ingest_news(report, cancel_event)
        return report.finish()

    def run_full_ingestion(self, cancel_event: threading.Event | None = None) -> IngestionReport:
        report = IngestionReport(kind="full")
        logger.info("Starting market ingestion pipeline...")
        self._ingest_markets(report, cancel_event)
        logger.info("Market ingestion complete: {} total markets", report.total_markets)
        logger.info("Starting news ingestion pipeline...")
        self._ingest_news(report, cancel_event)
        return report.finish()

    # ------------------------------------------------------------------
    # Internals

    def _ingest_markets(self, report: IngestionReport, cancel_event: threading.Event | None) -> None:
        disabled = set(self.settings.disabled_market_providers())
        for fetcher in self.market_fetchers:
            if fetcher.source in disabled:
                logger.info("{} ingestion skipped (no API key)", fetcher.name)
                report.markets.append(SourceResult(name=fetcher.name, status="skipped"))
                continue

            normalize = MARKET_NORMALIZERS[fetcher.source]
            result = self._ingest_source(fetcher, normalize, self._persist_markets, cancel_event)
            if result.status == "ok":
                logger.info("{}: ingested {} markets", fetcher.name, result.count)
            report.markets.append(result)

    def _ingest_news(self, report: IngestionReport, cancel_event: threading.Event | None) -> None:
        disabled = set(self.settings.disabled_news_providers())
        for fetcher in self.news_fetchers:
            if fetcher.name in disabled:
                logger.info("{} ingestion skipped (no API key)", fetcher.name)
                report.news.append(SourceResult(name=fetcher.name, status="skipped"))
                continue

            normalize = partial(NEWS_NORMALIZERS[fetcher.feed_type], source=fetcher.source)
            result = self._ingest_source(fetcher, normalize, self._persist_news, cancel_event)
            if result.status == "ok":
                logger.info(
                    "{}: ingested {} articles ({} duplicates)",
                    fetcher.name,
                    result.count,
                    result.duplicates,
                )
            report.news.append(result)

        logger.info("News ingestion complete: {} total articles", report.total_articles)

        try:
            report.news_deleted = self.persister.cleanup_old_news(self.settings.news_retention_days)
        except PersistError as exc:
            report.cleanup_error = str(exc)
            logger.warning("News cleanup failed: {}", exc)
        else:
            if report.news_deleted:
                logger.info("News cleanup: removed {} old articles", report.news_deleted)

    def _ingest_source(
        self,
        fetcher: Fetcher,
        normalize: Callable[[bytes], list[Any]],
        persist: Callable[[str, list[Any]], SourceResult],
        cancel_event: threading.Event | None,
    ) -> SourceResult:
        try:
            data = self.retrier.run(
                partial(fetcher.fetch, cancel_event),
                cancel_event,
                label=fetcher.name,
            )
            records = normalize(data)
            return persist(fetcher.name, records)
        except IngestionCancelled:
            raise
        except MaxRetriesExceededError as exc:
            logger.error("{} ingestion failed: fetch: {}", fetcher.name, exc)
            return SourceResult(name=fetcher.name, status="failed", error=str(exc))
        except NormalizationError as exc:
            logger.error("{} ingestion failed: normalize: {}", fetcher.name, exc)
            return SourceResult(name=fetcher.name, status="failed", error=str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("{} ingestion failed unexpectedly", fetcher.name)
            return SourceResult(
                name=fetcher.name,
                status="failed",
                error=f"{exc.__class__.__name__}: {exc}",
            )

    def _persist_markets(self, name: str, markets: list[NormalizedMarket]) -> SourceResult:
        inserted = self.persister.persist_markets(markets)
        return SourceResult(
            name=name,
            status="ok",
            count=inserted,
            failed_records=len(markets) - inserted,
        )

    def _persist_news(self, name: str, articles: list[NormalizedNewsArticle]) -> SourceResult:
        stats = self.persister.persist_news(articles)
        return SourceResult(
            name=name,
            status="ok",
            count=stats.inserted,
            duplicates=stats.duplicates,
            failed_records=stats.failed,
        )

    # ------------------------------------------------------------------
    # Lifecycle

    def close(self) -> None:
        fetchers: Iterable[Fetcher] = (*self.market_fetchers, *self.news_fetchers)
        for fetcher in fetchers:
            fetcher.close()

    def __enter__(self) -> "IngestionPipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
