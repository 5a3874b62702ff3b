from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from loguru import logger

from app.domain import NormalizedMarket, NormalizedNewsArticle
from app.repositories import IngestionStore

from .errors import PersistError


@dataclass(slots=True)
class NewsPersistStats:
    inserted: int = 0
    duplicates: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "failed": self.failed,
        }


class Persister:
    """Idempotent write layer over the ingestion store."""

    def __init__(self, store: IngestionStore) -> None:
        self._store = store

    def persist_markets(self, markets: Iterable[NormalizedMarket]) -> int:
        """Append every snapshot; failures are logged per item and skipped."""

        inserted = 0
        for market in markets:
            try:
                self._store.create_market(market)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Failed to persist market {} ({}): {}",
                    market.external_id,
                    market.source,
                    exc,
                )
                continue
            inserted += 1
        return inserted

    def persist_news(self, articles: Iterable[NormalizedNewsArticle]) -> NewsPersistStats:
        stats = NewsPersistStats()
        for article in articles:
            try:
                self._store.create_news_metadata_only(article)
            except Exception as exc:  # noqa: BLE001
                stats.failed += 1
                logger.warning("Failed to persist news article {}: {}", article.url, exc)
                continue

            # The store only assigns an id when the row was actually written.
            if article.id is not None:
                stats.inserted += 1
            else:
                stats.duplicates += 1

        logger.info(
            "News persistence: inserted={}, skipped={} (duplicates), failed={}",
            stats.inserted,
            stats.duplicates,
            stats.failed,
        )
        return stats

    def cleanup_old_news(self, retention_days: int, *, now: datetime | None = None) -> int:
        reference = now or datetime.now(timezone.utc)
        cutoff = reference - timedelta(days=retention_days)
        try:
            deleted = self._store.delete_old_news(cutoff)
        except Exception as exc:  # noqa: BLE001
            raise PersistError(f"cleanup old news: {exc}") from exc

        if deleted > 0:
            logger.info(
                "Cleaned up {} old news articles (older than {})",
                deleted,
                cutoff.date().isoformat(),
            )
        return deleted
