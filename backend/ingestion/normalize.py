from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser
from loguru import logger

from app.domain import NormalizedMarket, NormalizedNewsArticle
from app.models import MarketSource, MarketStatus

from .payloads import (
    parse_kalshi_response,
    parse_newsapi_response,
    parse_polymarket_response,
    parse_rss,
)


_STATUS_ALIASES = {
    "active": MarketStatus.OPEN.value,
    "open": MarketStatus.OPEN.value,
    "closed": MarketStatus.CLOSED.value,
    "finalized": MarketStatus.CLOSED.value,
    "settled": MarketStatus.RESOLVED.value,
    "resolved": MarketStatus.RESOLVED.value,
}

# Tried in order; RFC 1123/822 first because RSS feeds dominate.
_PUB_DATE_FORMATS = (
    "%a, %d %b %Y %H:%M:%S %z",
    "%a, %d %b %Y %H:%M:%S %Z",
    "%d %b %y %H:%M %z",
    "%d %b %y %H:%M %Z",
    "%Y-%m-%dT%H:%M:%S%z",
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%d %H:%M:%S",
    "%a, %d %b %Y %H:%M %z",
)

# RFC 822 zone names; strptime's %Z only knows UTC, GMT and the local zone.
_ZONE_ABBREVIATIONS = {
    "UT": 0,
    "UTC": 0,
    "GMT": 0,
    "EST": -5 * 3600,
    "EDT": -4 * 3600,
    "CST": -6 * 3600,
    "CDT": -5 * 3600,
    "MST": -7 * 3600,
    "MDT": -6 * 3600,
    "PST": -8 * 3600,
    "PDT": -7 * 3600,
}

_HTML_SUBSTITUTIONS = (
    ("<p>", ""),
    ("</p>", ""),
    ("<br>", " "),
    ("<br/>", " "),
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _assume_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _nonzero(value: float | None) -> float | None:
    """Zero is never a real observation for these fields; treat it as absent."""
    if value is None or value == 0:
        return None
    return float(value)


def _midpoint(bid: float | None, ask: float | None) -> float | None:
    if bid is None or ask is None:
        return None
    return (bid + ask) / 2.0


def _build_tags(category: str | None, source: str) -> list[str]:
    return [tag for tag in (category, source) if tag]


def _json_snapshot(payload: Any) -> dict[str, Any]:
    return payload.model_dump(mode="json", by_alias=True)


def normalize_status(status: str | None) -> str:
    lowered = (status or "").lower()
    return _STATUS_ALIASES.get(lowered, lowered)


def parse_pub_date(value: str | None) -> datetime:
    """Parse a feed timestamp, raising ``ValueError`` when no known format matches."""

    candidate = (value or "").strip()
    if not candidate:
        raise ValueError("empty date")

    if candidate.rpartition(" ")[2].upper() in _ZONE_ABBREVIATIONS:
        try:
            return _assume_utc(date_parser.parse(candidate, tzinfos=_ZONE_ABBREVIATIONS))
        except (ValueError, OverflowError) as exc:
            raise ValueError(f"unable to parse date: {candidate}") from exc

    for fmt in _PUB_DATE_FORMATS:
        try:
            parsed = datetime.strptime(candidate, fmt)
        except ValueError:
            continue
        return _assume_utc(parsed)

    try:
        parsed = date_parser.isoparse(candidate)
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"unable to parse date: {candidate}") from exc
    return _assume_utc(parsed)


def format_timestamp(value: datetime) -> str:
    return _assume_utc(value).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def resolve_published_at(value: str | None, *, source: str, fallback: datetime) -> str:
    try:
        return format_timestamp(parse_pub_date(value))
    except ValueError:
        logger.debug("Unparseable publish date {!r} from {}; using ingestion time", value, source)
        return format_timestamp(fallback)


def clean_html(value: str | None) -> str:
    """Strip the handful of tags and entities that show up in feed titles."""
    cleaned = value or ""
    for needle, replacement in _HTML_SUBSTITUTIONS:
        cleaned = cleaned.replace(needle, replacement)
    return cleaned.strip()


def hash_url(url: str) -> str:
    return hashlib.sha256(url.strip().encode("utf-8")).hexdigest()


def normalize_kalshi_markets(data: bytes, *, fetched_at: datetime | None = None) -> list[NormalizedMarket]:
    response = parse_kalshi_response(data)
    now = fetched_at or _utcnow()
    source = MarketSource.KALSHI.value

    markets: list[NormalizedMarket] = []
    for event in response.events:
        for raw_market in event.markets:
            if not raw_market.ticker:
                logger.warning("Skipping Kalshi market without ticker in event {}", event.event_ticker)
                continue

            markets.append(
                NormalizedMarket(
                    external_id=raw_market.ticker,
                    source=source,
                    title=raw_market.title or event.title or "",
                    description=event.sub_title,
                    category=event.category,
                    status=normalize_status(raw_market.status),
                    close_time=raw_market.close_time,
                    resolve_time=raw_market.expiration_time,
                    yes_price=_nonzero(_midpoint(raw_market.yes_bid, raw_market.yes_ask)),
                    no_price=_nonzero(_midpoint(raw_market.no_bid, raw_market.no_ask)),
                    last_trade_price=_nonzero(raw_market.last_price),
                    volume=_nonzero(raw_market.volume),
                    liquidity=None,
                    open_interest=_nonzero(raw_market.open_interest),
                    # Kalshi does not expose a creation time.
                    created_at=now,
                    updated_at=now,
                    fetched_at=now,
                    tags=_build_tags(event.category, source),
                    raw_data=_json_snapshot(raw_market),
                )
            )

    return markets


def _polymarket_status(closed: bool, active: bool) -> str:
    if closed:
        return normalize_status("closed")
    if not active:
        return normalize_status("inactive")
    return normalize_status("active")


def normalize_polymarket_markets(
    data: bytes, *, fetched_at: datetime | None = None
) -> list[NormalizedMarket]:
    events = parse_polymarket_response(data)
    now = fetched_at or _utcnow()
    source = MarketSource.POLYMARKET.value

    markets: list[NormalizedMarket] = []
    for event in events:
        for raw_market in event.markets:
            if not raw_market.condition_id:
                logger.warning("Skipping Polymarket market without conditionId in event {}", event.id)
                continue

            yes_price: float | None = None
            no_price: float | None = None
            if len(raw_market.outcome_prices) >= 2:
                yes_price = raw_market.outcome_prices[0]
                no_price = raw_market.outcome_prices[1]

            markets.append(
                NormalizedMarket(
                    external_id=raw_market.condition_id,
                    source=source,
                    title=raw_market.question or event.title or "",
                    description=event.description,
                    category=event.category,
                    status=_polymarket_status(raw_market.closed, raw_market.active),
                    close_time=raw_market.end_date,
                    resolve_time=None,
                    yes_price=_nonzero(yes_price),
                    no_price=_nonzero(no_price),
                    last_trade_price=_nonzero(yes_price),
                    volume=_nonzero(raw_market.volume),
                    liquidity=_nonzero(raw_market.liquidity),
                    open_interest=None,
                    created_at=event.creation_date or now,
                    updated_at=now,
                    fetched_at=now,
                    tags=_build_tags(event.category, source),
                    raw_data=_json_snapshot(raw_market),
                )
            )

    return markets


def normalize_rss_news(
    data: bytes, source: str, *, fetched_at: datetime | None = None
) -> list[NormalizedNewsArticle]:
    channel = parse_rss(data)
    now = fetched_at or _utcnow()

    articles: list[NormalizedNewsArticle] = []
    for item in channel.items:
        if not item.link:
            logger.debug("Skipping RSS item without link from {}: {!r}", source, item.title)
            continue

        articles.append(
            NormalizedNewsArticle(
                title=clean_html(item.title),
                source=source,
                url=item.link,
                url_hash=hash_url(item.link),
                author=item.author or channel.title or None,
                published_at=resolve_published_at(item.pub_date, source=source, fallback=now),
                fetched_at=now,
            )
        )

    return articles


def normalize_newsapi_articles(
    data: bytes, source: str = "newsapi", *, fetched_at: datetime | None = None
) -> list[NormalizedNewsArticle]:
    response = parse_newsapi_response(data)
    now = fetched_at or _utcnow()

    articles: list[NormalizedNewsArticle] = []
    for item in response.articles:
        url = (item.url or "").strip()
        if not url:
            logger.debug("Skipping NewsAPI article without url: {!r}", item.title)
            continue

        article_source = item.source.name or source
        articles.append(
            NormalizedNewsArticle(
                title=clean_html(item.title),
                source=article_source,
                url=url,
                url_hash=hash_url(url),
                author=item.author or item.source.name or None,
                published_at=resolve_published_at(item.published_at, source=article_source, fallback=now),
                fetched_at=now,
            )
        )

    return articles
