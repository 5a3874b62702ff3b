"""Repository abstractions for database interactions."""

from .ingestion_store import IngestionStore, SqlIngestionStore
from .market_repository import MarketRepository
from .news_repository import NewsRepository

__all__ = [
    "IngestionStore",
    "MarketRepository",
    "NewsRepository",
    "SqlIngestionStore",
]
