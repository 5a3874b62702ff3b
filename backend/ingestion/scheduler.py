from __future__ import annotations

import threading
import time
from enum import Enum

from loguru import logger

from .errors import IngestionCancelled
from .pipeline import IngestionPipeline, IngestionReport


_RUN_METHODS = {
    "full": "run_full_ingestion",
    "markets": "run_market_ingestion",
    "news": "run_news_ingestion",
}


class SchedulerState(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class IngestionScheduler:
    """Run the pipeline once immediately, then once per interval.

    ``start`` blocks the calling thread. The loop ends when ``stop`` is
    called (from a signal handler or another thread) or when the optional
    cancel event is set. A run that outlasts the interval delays the next
    one instead of queueing extra runs.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        interval_seconds: float,
        *,
        mode: str = "full",
        poll_seconds: float = 1.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if mode not in _RUN_METHODS:
            raise ValueError(f"Unknown ingestion mode {mode!r}")
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds
        self.mode = mode
        self.poll_seconds = poll_seconds
        self.runs_completed = 0
        self.last_report: IngestionReport | None = None
        self._state = SchedulerState.STOPPED
        self._lock = threading.RLock()
        self._stop_event = threading.Event()

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            return self._state

    def start(self, cancel_event: threading.Event | None = None) -> None:
        with self._lock:
            if self._state is SchedulerState.RUNNING:
                raise RuntimeError("Ingestion scheduler is already running")
            self._state = SchedulerState.RUNNING
            self._stop_event = threading.Event()
            stop_event = self._stop_event

        if cancel_event is not None:
            threading.Thread(
                target=self._forward_cancel,
                args=(cancel_event, stop_event),
                name="ingestion-cancel-forwarder",
                daemon=True,
            ).start()

        logger.info(
            "Ingestion scheduler started (mode={}, interval={}s)",
            self.mode,
            self.interval_seconds,
        )
        try:
            while not self._should_stop(cancel_event):
                started = time.monotonic()
                if not self._run_once(cancel_event):
                    break
                if self._wait_until(started + self.interval_seconds, cancel_event):
                    break
        finally:
            stop_event.set()
            with self._lock:
                self._state = SchedulerState.STOPPED
            logger.info("Ingestion scheduler stopped after {} runs", self.runs_completed)

    def stop(self) -> None:
        """Ask a running scheduler to exit; no effect when it is not running."""

        with self._lock:
            if self._state is not SchedulerState.RUNNING:
                return
            self._stop_event.set()

    def _should_stop(self, cancel_event: threading.Event | None) -> bool:
        if self._stop_event.is_set():
            return True
        return cancel_event is not None and cancel_event.is_set()

    def _wait_until(self, deadline: float, cancel_event: threading.Event | None) -> bool:
        """Sleep until ``deadline``; True means the loop should exit instead of running."""

        remaining = deadline - time.monotonic()
        if remaining > 0:
            self._stop_event.wait(remaining)
        return self._should_stop(cancel_event)

    def _forward_cancel(self, cancel_event: threading.Event, stop_event: threading.Event) -> None:
        # Wakes the interval wait as soon as the caller's cancel event fires.
        while not stop_event.is_set():
            if cancel_event.wait(self.poll_seconds):
                stop_event.set()
                return

    def _run_once(self, cancel_event: threading.Event | None) -> bool:
        run = getattr(self.pipeline, _RUN_METHODS[self.mode])
        try:
            report = run(cancel_event)
        except IngestionCancelled as exc:
            logger.info("Ingestion run cancelled: {}", exc)
            return False
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled ingestion run failed")
            self.runs_completed += 1
            return True

        self.runs_completed += 1
        self.last_report = report
        logger.info(
            "Scheduled ingestion run {} finished: {} markets, {} articles, {} failed sources",
            self.runs_completed,
            report.total_markets,
            report.total_articles,
            len(report.failed_sources),
        )
        return True
