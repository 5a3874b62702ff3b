"""Provider wire formats parsed into intermediate structures.

Every field a provider may omit is optional here; normalization decides what
an absent value means for the canonical records.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import feedparser
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import NormalizationError


def _as_list(value: Any) -> list[Any]:
    """Return value as a list when possible, decoding JSON strings."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        if not value.strip():
            return []
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _stringify(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class _ProviderPayload(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ----------------------------------------------------------------------
# Kalshi


class KalshiMarket(_ProviderPayload):
    ticker: str | None = None
    event_ticker: str | None = None
    title: str | None = None
    status: str | None = None
    yes_bid: float | None = None
    yes_ask: float | None = None
    no_bid: float | None = None
    no_ask: float | None = None
    last_price: float | None = None
    volume: float | None = None
    open_interest: float | None = None
    close_time: datetime | None = None
    expiration_time: datetime | None = None

    @field_validator(
        "yes_bid",
        "yes_ask",
        "no_bid",
        "no_ask",
        "last_price",
        "volume",
        "open_interest",
        "close_time",
        "expiration_time",
        mode="before",
    )
    @classmethod
    def _blank_values(cls, value: Any) -> Any:
        return _blank_to_none(value)


class KalshiEvent(_ProviderPayload):
    event_ticker: str | None = None
    title: str | None = None
    category: str | None = None
    sub_title: str | None = None
    markets: list[KalshiMarket] = Field(default_factory=list)

    @field_validator("markets", mode="before")
    @classmethod
    def _null_markets(cls, value: Any) -> Any:
        return [] if value is None else value


class KalshiResponse(_ProviderPayload):
    events: list[KalshiEvent] = Field(default_factory=list)
    cursor: str | None = None

    @field_validator("events", mode="before")
    @classmethod
    def _null_events(cls, value: Any) -> Any:
        return [] if value is None else value


def parse_kalshi_response(data: bytes) -> KalshiResponse:
    try:
        return KalshiResponse.model_validate_json(data)
    except ValidationError as exc:
        raise NormalizationError(f"unmarshal kalshi response: {exc}") from exc


# ----------------------------------------------------------------------
# Polymarket


class PolymarketMarket(_ProviderPayload):
    condition_id: str | None = Field(default=None, alias="conditionId")
    question: str | None = None
    outcome_prices: list[float] = Field(default_factory=list, alias="outcomePrices")
    volume: float | None = None
    liquidity: float | None = None
    end_date: datetime | None = Field(default=None, alias="endDate")
    closed: bool = False
    active: bool = False

    @field_validator("outcome_prices", mode="before")
    @classmethod
    def _decode_outcome_prices(cls, value: Any) -> list[Any]:
        return _as_list(value)

    @field_validator("volume", "liquidity", "end_date", mode="before")
    @classmethod
    def _blank_values(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("closed", "active", mode="before")
    @classmethod
    def _null_flags(cls, value: Any) -> Any:
        return False if value is None else value


class PolymarketEvent(_ProviderPayload):
    id: str | None = None
    slug: str | None = None
    title: str | None = None
    description: str | None = None
    category: str | None = None
    end_date: datetime | None = Field(default=None, alias="endDate")
    creation_date: datetime | None = Field(default=None, alias="creationDate")
    closed: bool = False
    active: bool = False
    markets: list[PolymarketMarket] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return _stringify(value)

    @field_validator("end_date", "creation_date", mode="before")
    @classmethod
    def _blank_dates(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("closed", "active", mode="before")
    @classmethod
    def _null_flags(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("markets", mode="before")
    @classmethod
    def _null_markets(cls, value: Any) -> Any:
        return [] if value is None else value


_POLYMARKET_EVENTS = TypeAdapter(list[PolymarketEvent])


def parse_polymarket_response(data: bytes) -> list[PolymarketEvent]:
    try:
        return _POLYMARKET_EVENTS.validate_json(data)
    except ValidationError as exc:
        raise NormalizationError(f"unmarshal polymarket response: {exc}") from exc


# ----------------------------------------------------------------------
# NewsAPI


class NewsAPISource(_ProviderPayload):
    id: str | None = None
    name: str | None = None


class NewsAPIArticle(_ProviderPayload):
    source: NewsAPISource = Field(default_factory=NewsAPISource)
    author: str | None = None
    title: str | None = None
    description: str | None = None
    url: str | None = None
    published_at: str | None = Field(default=None, alias="publishedAt")
    content: str | None = None

    @field_validator("source", mode="before")
    @classmethod
    def _null_source(cls, value: Any) -> Any:
        return {} if value is None else value


class NewsAPIResponse(_ProviderPayload):
    status: str | None = None
    total_results: int | None = Field(default=None, alias="totalResults")
    articles: list[NewsAPIArticle] = Field(default_factory=list)
    code: str | None = None
    message: str | None = None

    @field_validator("articles", mode="before")
    @classmethod
    def _null_articles(cls, value: Any) -> Any:
        return [] if value is None else value


def parse_newsapi_response(data: bytes) -> NewsAPIResponse:
    try:
        response = NewsAPIResponse.model_validate_json(data)
    except ValidationError as exc:
        raise NormalizationError(f"unmarshal NewsAPI response: {exc}") from exc
    if (response.status or "").lower() == "error":
        raise NormalizationError(
            f"NewsAPI error response ({response.code or 'unknown'}): {response.message or 'no message'}"
        )
    return response


# ----------------------------------------------------------------------
# RSS


@dataclass(slots=True)
class RSSItem:
    title: str
    link: str
    description: str
    author: str
    pub_date: str
    guid: str


@dataclass(slots=True)
class RSSChannel:
    title: str
    link: str
    description: str
    items: list[RSSItem] = field(default_factory=list)


# Encoding mismatches still leave a well-formed document behind.
_TOLERATED_FEED_WARNINGS = (feedparser.CharacterEncodingOverride, feedparser.NonXMLContentType)


def parse_rss(data: bytes) -> RSSChannel:
    """Parse an RSS/Atom document; ``<dc:creator>`` surfaces as the item author."""

    parsed = feedparser.parse(data)
    bozo_exception = parsed.get("bozo_exception")
    if parsed.get("bozo") and not isinstance(bozo_exception, _TOLERATED_FEED_WARNINGS):
        raise NormalizationError(f"unmarshal RSS: {bozo_exception}")
    entries = parsed.get("entries") or []
    if not entries and not parsed.get("version"):
        raise NormalizationError("unmarshal RSS: unrecognized feed format")

    feed = parsed.get("feed") or {}
    items = [
        RSSItem(
            title=entry.get("title") or "",
            link=(entry.get("link") or "").strip(),
            description=entry.get("summary") or "",
            author=entry.get("author") or "",
            pub_date=entry.get("published") or entry.get("updated") or "",
            guid=entry.get("id") or "",
        )
        for entry in entries
    ]
    return RSSChannel(
        title=feed.get("title") or "",
        link=feed.get("link") or "",
        description=feed.get("subtitle") or "",
        items=items,
    )
