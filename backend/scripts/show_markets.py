import argparse
import json
from datetime import datetime, timezone

from loguru import logger

from app.core.config import get_settings
from app.db import build_db_components, init_db
from app.models import Market, MarketSource
from app.repositories import SqlIngestionStore


def _isoformat_utc(dt):
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _market_to_dict(market: Market) -> dict:
    return {
        "id": market.id,
        "external_id": market.external_id,
        "source": market.source,
        "title": market.title,
        "status": market.status,
        "yes_price": market.yes_price,
        "no_price": market.no_price,
        "last_trade_price": market.last_trade_price,
        "volume": market.volume,
        "liquidity": market.liquidity,
        "open_interest": market.open_interest,
        "close_time": _isoformat_utc(market.close_time),
        "fetched_at": _isoformat_utc(market.fetched_at),
        "tags": market.tags,
    }


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show stored prediction-market snapshots")
    parser.add_argument(
        "--source",
        choices=[source.value for source in MarketSource],
        default=MarketSource.POLYMARKET.value,
        help="Market provider to inspect",
    )
    parser.add_argument("--limit", type=int, default=20, help="Show up to N contracts")
    parser.add_argument(
        "--history",
        metavar="EXTERNAL_ID",
        default=None,
        help="Print every snapshot of one contract instead of the latest per contract",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()
    engine, session_factory = build_db_components(settings)
    init_db(engine)
    store = SqlIngestionStore(session_factory)

    try:
        if args.history:
            markets = store.list_market_history(args.history, args.source)
            if not markets:
                logger.warning("No snapshots stored for {} ({})", args.history, args.source)
        else:
            markets = store.list_latest_markets(args.source, limit=args.limit)
        payload = {
            "generated_at": _isoformat_utc(datetime.now(timezone.utc)),
            "source": args.source,
            "markets": [_market_to_dict(market) for market in markets],
        }
        print(json.dumps(payload, indent=2))
        logger.info("Listed {} market snapshots", len(markets))
    finally:
        engine.dispose()


if __name__ == "__main__":
    main()
