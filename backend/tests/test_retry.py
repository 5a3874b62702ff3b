from __future__ import annotations

import threading

import pytest

from ingestion.errors import (
    FetchError,
    IngestionCancelled,
    MaxRetriesExceededError,
    RateLimitedError,
)
from ingestion.retry import Retrier, wait_for_cancel


class FlakyOperation:
    def __init__(self, failures: list[Exception], result: bytes = b"ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    def __call__(self) -> bytes:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_retrier_returns_first_success_without_waiting():
    operation = FlakyOperation([])
    assert Retrier(3, 0).run(operation) == b"ok"
    assert operation.calls == 1


def test_retrier_recovers_after_transient_failures():
    operation = FlakyOperation(
        [FetchError("kalshi", "unexpected status 502", status_code=502), RateLimitedError("kalshi")]
    )

    assert Retrier(3, 0).run(operation, label="kalshi") == b"ok"
    assert operation.calls == 3


def test_retrier_gives_up_after_max_retries_plus_one_attempts():
    failures = [FetchError("polymarket", f"attempt {index}") for index in range(10)]
    operation = FlakyOperation(failures)

    with pytest.raises(MaxRetriesExceededError) as excinfo:
        Retrier(2, 0).run(operation)

    assert operation.calls == 3
    assert excinfo.value.attempts == 3
    assert "max retries exceeded" in str(excinfo.value)
    assert isinstance(excinfo.value.last_error, FetchError)
    assert "attempt 2" in str(excinfo.value.last_error)


def test_retrier_with_zero_retries_runs_once():
    operation = FlakyOperation([FetchError("rss:bbc", "boom")])

    with pytest.raises(MaxRetriesExceededError):
        Retrier(0, 0).run(operation)
    assert operation.calls == 1


def test_retrier_does_not_retry_other_errors():
    operation = FlakyOperation([ValueError("bad url")])

    with pytest.raises(ValueError):
        Retrier(3, 0).run(operation)
    assert operation.calls == 1


def test_retrier_backoff_doubles():
    retrier = Retrier(4, 5.0)
    assert [retrier.backoff_for(attempt) for attempt in (1, 2, 3, 4)] == [5.0, 10.0, 20.0, 40.0]


def test_retrier_cancelled_during_backoff():
    cancel_event = threading.Event()

    def operation() -> bytes:
        cancel_event.set()
        raise FetchError("newsapi", "unexpected status 503", status_code=503)

    with pytest.raises(IngestionCancelled):
        # A long backoff would hang the test if the wait ignored the event.
        Retrier(3, 60.0).run(operation, cancel_event)


def test_retrier_rejects_negative_configuration():
    with pytest.raises(ValueError):
        Retrier(-1, 0)
    with pytest.raises(ValueError):
        Retrier(1, -0.5)


def test_wait_for_cancel():
    event = threading.Event()
    assert wait_for_cancel(event, 0) is False
    assert wait_for_cancel(None, 0.01) is False
    event.set()
    assert wait_for_cancel(event, 5) is True
