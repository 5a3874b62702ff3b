"""Market snapshot data access helpers."""

from __future__ import annotations

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from app.domain import NormalizedMarket
from app.models import Market


class MarketRepository:
    """Append-only access to market snapshots.

    Rows are never updated; history for one contract is the set of rows
    sharing ``(external_id, source)`` ordered by ``fetched_at``.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Mutations

    def create_market(self, market: NormalizedMarket) -> Market:
        record = Market(
            external_id=market.external_id,
            source=market.source,
            title=market.title,
            description=market.description,
            category=market.category,
            status=market.status,
            close_time=market.close_time,
            resolve_time=market.resolve_time,
            yes_price=market.yes_price,
            no_price=market.no_price,
            last_trade_price=market.last_trade_price,
            volume=market.volume,
            liquidity=market.liquidity,
            open_interest=market.open_interest,
            tags=list(market.tags),
            created_at=market.created_at,
            updated_at=market.updated_at,
            fetched_at=market.fetched_at,
            raw_data=market.raw_data,
        )
        self._session.add(record)
        self._session.flush()
        market.id = record.id
        return record

    # ------------------------------------------------------------------
    # Queries

    def get_latest_market_by_external_id(self, external_id: str, source: str) -> Market | None:
        query = (
            select(Market)
            .where(Market.external_id == external_id, Market.source == source)
            .order_by(Market.fetched_at.desc(), Market.id.desc())
            .limit(1)
        )
        return self._session.execute(query).scalars().first()

    def list_market_history(self, external_id: str, source: str) -> list[Market]:
        query = (
            select(Market)
            .where(Market.external_id == external_id, Market.source == source)
            .order_by(Market.fetched_at.asc(), Market.id.asc())
        )
        return list(self._session.execute(query).scalars().all())

    def list_latest_markets(self, source: str, *, limit: int = 100) -> list[Market]:
        """Return the newest snapshot of each contract from ``source``."""

        latest = (
            select(
                Market.external_id.label("external_id"),
                func.max(Market.fetched_at).label("fetched_at"),
            )
            .where(Market.source == source)
            .group_by(Market.external_id)
            .subquery()
        )
        query = (
            select(Market)
            .join(
                latest,
                and_(
                    Market.external_id == latest.c.external_id,
                    Market.fetched_at == latest.c.fetched_at,
                ),
            )
            .where(Market.source == source)
            .order_by(Market.external_id.asc())
            .limit(limit)
        )
        return list(self._session.execute(query).scalars().all())
