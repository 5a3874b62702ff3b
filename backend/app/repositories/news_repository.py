"""News metadata data access helpers."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.domain import NormalizedNewsArticle
from app.models import NewsArticle, utcnow


_CONFLICT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class NewsRepository:
    """Metadata-only news persistence deduplicated on ``url_hash``."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_news_metadata_only(self, article: NormalizedNewsArticle) -> bool:
        """Insert ``article`` unless its ``url_hash`` already exists.

        Returns True and assigns ``article.id``/``article.inserted_at`` when a
        row was written; returns False for a duplicate.
        """

        article.id = None
        article.inserted_at = None
        values = {
            "title": article.title,
            "content": article.content or None,
            "source": article.source,
            "url": article.url,
            "url_hash": article.url_hash,
            "author": article.author,
            "published_at": article.published_at,
            "fetched_at": article.fetched_at,
            "inserted_at": utcnow(),
        }

        dialect = self._session.get_bind().dialect.name
        insert_factory = _CONFLICT_INSERTS.get(dialect)
        if insert_factory is None:
            return self._insert_with_savepoint(article, values)

        statement = (
            insert_factory(NewsArticle)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[NewsArticle.url_hash])
            .returning(NewsArticle.id, NewsArticle.inserted_at)
        )
        row = self._session.execute(statement).first()
        if row is None:
            return False

        article.id = row.id
        article.inserted_at = row.inserted_at
        return True

    def _insert_with_savepoint(self, article: NormalizedNewsArticle, values: dict) -> bool:
        record = NewsArticle(**values)
        try:
            with self._session.begin_nested():
                self._session.add(record)
                self._session.flush()
        except IntegrityError:
            return False
        article.id = record.id
        article.inserted_at = record.inserted_at
        return True

    def delete_old_news(self, older_than: datetime) -> int:
        statement = delete(NewsArticle).where(NewsArticle.fetched_at < older_than)
        result = self._session.execute(statement, execution_options={"synchronize_session": False})
        return int(result.rowcount or 0)

    # ------------------------------------------------------------------
    # Queries

    def get_news_by_url_hash(self, url_hash: str) -> NewsArticle | None:
        query = select(NewsArticle).where(NewsArticle.url_hash == url_hash).limit(1)
        return self._session.execute(query).scalars().first()

    def count_news(self) -> int:
        query = select(func.count()).select_from(NewsArticle)
        return int(self._session.execute(query).scalar_one())
