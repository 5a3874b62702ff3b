"""Storage interface consumed by the ingestion persister."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from sqlalchemy.orm import Session, sessionmaker

from app.db import session_scope
from app.domain import NormalizedMarket, NormalizedNewsArticle
from app.models import Market, NewsArticle

from .market_repository import MarketRepository
from .news_repository import NewsRepository


class IngestionStore(Protocol):
    def create_market(self, market: NormalizedMarket) -> None: ...

    def create_news_metadata_only(self, article: NormalizedNewsArticle) -> None: ...

    def get_latest_market_by_external_id(self, external_id: str, source: str) -> Market | None: ...

    def delete_old_news(self, cutoff: datetime) -> int: ...


class SqlIngestionStore:
    """SQLAlchemy-backed store running every call in its own transaction.

    One transaction per record keeps a single failed insert from rolling back
    the rest of a batch.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def create_market(self, market: NormalizedMarket) -> None:
        with session_scope(self._session_factory) as session:
            MarketRepository(session).create_market(market)

    def create_news_metadata_only(self, article: NormalizedNewsArticle) -> None:
        with session_scope(self._session_factory) as session:
            NewsRepository(session).create_news_metadata_only(article)

    def get_latest_market_by_external_id(self, external_id: str, source: str) -> Market | None:
        with session_scope(self._session_factory) as session:
            return MarketRepository(session).get_latest_market_by_external_id(external_id, source)

    def list_market_history(self, external_id: str, source: str) -> list[Market]:
        with session_scope(self._session_factory) as session:
            return MarketRepository(session).list_market_history(external_id, source)

    def list_latest_markets(self, source: str, *, limit: int = 100) -> list[Market]:
        with session_scope(self._session_factory) as session:
            return MarketRepository(session).list_latest_markets(source, limit=limit)

    def get_news_by_url_hash(self, url_hash: str) -> NewsArticle | None:
        with session_scope(self._session_factory) as session:
            return NewsRepository(session).get_news_by_url_hash(url_hash)

    def count_news(self) -> int:
        with session_scope(self._session_factory) as session:
            return NewsRepository(session).count_news()

    def delete_old_news(self, cutoff: datetime) -> int:
        with session_scope(self._session_factory) as session:
            return NewsRepository(session).delete_old_news(cutoff)
