from __future__ import annotations

import pytest

from app.core.config import Settings
from ingestion.errors import FetchError
from ingestion.fetchers import PolymarketFetcher
from ingestion.normalize import normalize_polymarket_markets


@pytest.mark.network
def test_polymarket_fetcher_live_returns_markets():
    with PolymarketFetcher(Settings(_env_file=None, request_timeout=15)) as fetcher:
        try:
            payload = fetcher.fetch()
        except FetchError as exc:
            pytest.skip(f"Polymarket API unavailable: {exc}")

    markets = normalize_polymarket_markets(payload)

    assert markets, "Polymarket API returned no markets"
    for market in markets[:5]:
        assert market.source == "polymarket"
        assert market.external_id, "market payload missing conditionId"
        assert market.title, "market payload missing question text"
