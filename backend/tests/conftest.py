from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.db import build_db_components, init_db
from app.repositories import SqlIngestionStore


DATA_DIR = Path(__file__).parent / "data"


def _read_payload(name: str) -> bytes:
    return (DATA_DIR / name).read_bytes()


@pytest.fixture
def kalshi_payload() -> bytes:
    return _read_payload("kalshi_response.json")


@pytest.fixture
def polymarket_payload() -> bytes:
    return _read_payload("polymarket_response.json")


@pytest.fixture
def rss_payload() -> bytes:
    return _read_payload("rss_feed.xml")


@pytest.fixture
def newsapi_payload() -> bytes:
    return _read_payload("newsapi_response.json")


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        _env_file=None,
        database_url="sqlite://",
        kalshi_api_key="test-kalshi-key",
        news_api_key="test-news-key",
        news_feeds={"techcrunch": "https://feeds.example.com/techcrunch.xml"},
        max_retries=2,
        retry_backoff_seconds=0,
        news_retention_days=30,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    return settings


@pytest.fixture
def db_components(test_settings):
    engine, session_factory = build_db_components(test_settings)
    init_db(engine)
    yield engine, session_factory
    engine.dispose()


@pytest.fixture
def store(db_components) -> SqlIngestionStore:
    _, session_factory = db_components
    return SqlIngestionStore(session_factory)
