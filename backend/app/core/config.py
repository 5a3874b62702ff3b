from functools import lru_cache
from typing import Any
from urllib.parse import urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    return urlunparse(parsed._replace(scheme=scheme))


def _parse_duration_seconds(value: Any) -> float:
    """Accept plain seconds or duration strings with a unit suffix (``1500ms``, ``30s``, ``5m``, ``1h``)."""

    if isinstance(value, bool):
        raise ValueError("duration must be a number of seconds or a string like '5m'")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        raise ValueError("duration must be a number of seconds or a string like '5m'")

    candidate = value.strip().lower()
    if not candidate:
        raise ValueError("duration must not be blank")
    try:
        return float(candidate)
    except ValueError:
        pass

    # Longest suffix first so "ms" wins over "s".
    for suffix in sorted(_DURATION_UNITS, key=len, reverse=True):
        if candidate.endswith(suffix):
            number = candidate[: -len(suffix)].strip()
            try:
                return float(number) * _DURATION_UNITS[suffix]
            except ValueError as exc:
                raise ValueError(f"invalid duration: {value!r}") from exc
    raise ValueError(f"invalid duration: {value!r}")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Echo SQL statements issued by the storage layer")
    log_level: str = Field(
        default="INFO",
        description="Minimum loguru level emitted by the ingestion command",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///./data/market_ingestion.db",
        description="SQLAlchemy compatible database URL for market snapshots and news metadata",
    )
    database_pool_size: int = Field(
        default=5,
        description="Connection pool size for server databases (ignored for SQLite)",
        ge=1,
    )
    database_max_overflow: int = Field(
        default=10,
        description="Connections allowed beyond the pool size (ignored for SQLite)",
        ge=0,
    )
    kalshi_api_key: str | None = Field(
        default=None,
        description="Kalshi API key; Kalshi ingestion is disabled when unset",
    )
    kalshi_api_url: AnyUrl = Field(
        default="https://api.elections.kalshi.com/trade-api/v2",
        description="Base URL for the Kalshi trade API",
    )
    polymarket_api_url: AnyUrl = Field(
        default="https://gamma-api.polymarket.com",
        description="Base URL for the Polymarket gamma API",
    )
    news_api_key: str | None = Field(
        default=None,
        description="NewsAPI.org key; API-based news ingestion is disabled when unset",
    )
    newsapi_url: AnyUrl = Field(
        default="https://newsapi.org/v2",
        description="Base URL for NewsAPI.org",
    )
    newsapi_query: str = Field(
        default="prediction markets OR crypto OR politics",
        description="Search query sent to the NewsAPI everything endpoint",
    )
    newsapi_category: str | None = Field(
        default=None,
        description="When set, NewsAPI top-headlines are fetched for this category instead",
    )
    news_feeds: dict[str, str] = Field(
        default_factory=dict,
        description="RSS feeds keyed by source name; empty means the built-in feed registry",
    )
    ingestion_interval: float = Field(
        default=300.0,
        description="Seconds between scheduled ingestion runs (accepts '30s', '5m', '1h')",
        gt=0,
    )
    news_retention_days: int = Field(
        default=30,
        description="News rows fetched longer ago than this are deleted after each news run",
        ge=0,
    )
    max_retries: int = Field(
        default=3,
        description="Retries after the first failed fetch attempt for one provider",
        ge=0,
    )
    retry_backoff_seconds: float = Field(
        default=5.0,
        description="Base delay for exponential fetch backoff (base * 2**(attempt-1))",
        ge=0,
    )
    request_timeout: float = Field(
        default=30.0,
        description="Per-request timeout in seconds for provider calls (accepts '30s')",
        gt=0,
    )

    @field_validator("ingestion_interval", "request_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> float:
        return _parse_duration_seconds(value)

    @field_validator("kalshi_api_key", "news_api_key", "newsapi_category", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return value.strip().upper() or "INFO"

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @property
    def resolved_database_url(self) -> str:
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    def disabled_market_providers(self) -> list[str]:
        """Market providers that will be skipped because their credential is missing."""

        disabled: list[str] = []
        if not self.kalshi_api_key:
            disabled.append("kalshi")
        return disabled

    def disabled_news_providers(self) -> list[str]:
        disabled: list[str] = []
        if not self.news_api_key:
            disabled.append("newsapi")
        return disabled


@lru_cache
def get_settings() -> Settings:
    return Settings()
