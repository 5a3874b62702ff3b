from __future__ import annotations

import threading
from collections.abc import Callable

from loguru import logger

from .errors import FetchError, IngestionCancelled, MaxRetriesExceededError, RateLimitedError


def wait_for_cancel(cancel_event: threading.Event | None, seconds: float) -> bool:
    """Wait up to ``seconds``; return True as soon as ``cancel_event`` fires."""

    if seconds <= 0:
        return cancel_event is not None and cancel_event.is_set()
    if cancel_event is None:
        # Nothing can interrupt the wait, so a private event just times out.
        return threading.Event().wait(seconds)
    return cancel_event.wait(seconds)


class Retrier:
    """Exponential-backoff retry around a zero-argument fetch operation.

    ``max_retries`` counts retries, so an operation that always fails runs
    ``max_retries + 1`` times. Only ``FetchError`` is retried.
    """

    def __init__(self, max_retries: int, backoff_seconds: float) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if backoff_seconds < 0:
            raise ValueError("backoff_seconds must be >= 0")
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return self.backoff_seconds * (2 ** (attempt - 1))

    def run(
        self,
        operation: Callable[[], bytes],
        cancel_event: threading.Event | None = None,
        *,
        label: str = "fetch",
    ) -> bytes:
        last_error: FetchError | None = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.backoff_for(attempt)
                logger.info(
                    "{} retry attempt {}/{} after {:.1f}s",
                    label,
                    attempt,
                    self.max_retries,
                    delay,
                )
                if wait_for_cancel(cancel_event, delay):
                    raise IngestionCancelled(f"{label}: cancelled during retry backoff")

            try:
                return operation()
            except FetchError as exc:
                last_error = exc
                if isinstance(exc, RateLimitedError):
                    logger.warning("{} attempt {} rate limited: {}", label, attempt + 1, exc)
                else:
                    logger.warning("{} attempt {} failed: {}", label, attempt + 1, exc)

        assert last_error is not None
        raise MaxRetriesExceededError(self.max_retries + 1, last_error) from last_error
