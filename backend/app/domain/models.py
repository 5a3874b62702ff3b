"""Canonical records produced by the normalizers and consumed by the persister."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class NormalizedMarket:
    """Provider-agnostic market snapshot ready for an append-only insert."""

    external_id: str
    source: str
    title: str
    description: str | None
    category: str | None
    status: str
    close_time: datetime | None
    resolve_time: datetime | None
    yes_price: float | None
    no_price: float | None
    last_trade_price: float | None
    volume: float | None
    liquidity: float | None
    open_interest: float | None
    created_at: datetime
    updated_at: datetime
    fetched_at: datetime
    tags: list[str] = field(default_factory=list)
    raw_data: dict[str, Any] | None = None
    id: int | None = None


@dataclass(slots=True)
class NormalizedNewsArticle:
    """News metadata keyed by ``url_hash``.

    ``id`` and ``inserted_at`` stay ``None`` until storage accepts the row; a
    duplicate insert leaves them unset.
    """

    title: str
    source: str
    url: str
    url_hash: str
    author: str | None
    published_at: str
    fetched_at: datetime
    content: str = ""
    id: int | None = None
    inserted_at: datetime | None = None
