from __future__ import annotations


class IngestionError(Exception):
    """Base class for ingestion pipeline failures."""


class FetchError(IngestionError):
    """Raised when a provider request fails; always eligible for retry."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class RateLimitedError(FetchError):
    """Raised when a provider answers with HTTP 429."""

    def __init__(self, provider: str, *, retry_after: str | None = None) -> None:
        super().__init__(provider, "rate limited (HTTP 429)", status_code=429)
        self.retry_after = retry_after


class MaxRetriesExceededError(IngestionError):
    """Raised once every fetch attempt for one provider has failed."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"max retries exceeded after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class NormalizationError(IngestionError):
    """Raised when a provider payload cannot be parsed into canonical records."""


class PersistError(IngestionError):
    """Raised when a storage operation outside the per-record loops fails."""


class IngestionCancelled(IngestionError):
    """Raised when the cancellation signal fires during a fetch or wait."""
