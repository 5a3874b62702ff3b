from __future__ import annotations

import threading
import time

import pytest

from ingestion.errors import IngestionCancelled
from ingestion.pipeline import IngestionReport
from ingestion.scheduler import IngestionScheduler, SchedulerState


class StubPipeline:
    def __init__(self, on_run=None) -> None:
        self.on_run = on_run
        self.calls: list[str] = []
        self.started_at: list[float] = []

    def _run(self, kind: str, cancel_event) -> IngestionReport:
        self.calls.append(kind)
        self.started_at.append(time.monotonic())
        if self.on_run is not None:
            self.on_run(len(self.calls), cancel_event)
        return IngestionReport(kind=kind).finish()

    def run_full_ingestion(self, cancel_event=None) -> IngestionReport:
        return self._run("full", cancel_event)

    def run_market_ingestion(self, cancel_event=None) -> IngestionReport:
        return self._run("markets", cancel_event)

    def run_news_ingestion(self, cancel_event=None) -> IngestionReport:
        return self._run("news", cancel_event)


def _scheduler(pipeline, interval: float = 0.01, **kwargs) -> IngestionScheduler:
    return IngestionScheduler(pipeline, interval, poll_seconds=0.005, **kwargs)


def test_scheduler_runs_immediately_then_on_interval():
    holder: dict[str, IngestionScheduler] = {}

    def on_run(count, _cancel_event):
        if count == 3:
            holder["scheduler"].stop()

    pipeline = StubPipeline(on_run)
    scheduler = holder["scheduler"] = _scheduler(pipeline)

    scheduler.start()

    assert pipeline.calls == ["full", "full", "full"]
    assert scheduler.runs_completed == 3
    assert scheduler.last_report is not None
    assert scheduler.state is SchedulerState.STOPPED


def test_scheduler_stops_from_another_thread():
    pipeline = StubPipeline()
    scheduler = _scheduler(pipeline, interval=60)
    worker = threading.Thread(target=scheduler.start)

    worker.start()
    deadline = time.monotonic() + 5
    while not pipeline.calls and time.monotonic() < deadline:
        time.sleep(0.005)
    scheduler.stop()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert pipeline.calls == ["full"]
    assert scheduler.state is SchedulerState.STOPPED


def test_scheduler_exits_when_cancel_event_fires():
    cancel_event = threading.Event()

    def on_run(count, _cancel_event):
        cancel_event.set()

    pipeline = StubPipeline(on_run)
    scheduler = _scheduler(pipeline, interval=60)

    scheduler.start(cancel_event)

    assert pipeline.calls == ["full"]


def test_cancel_event_interrupts_interval_wait():
    cancel_event = threading.Event()
    pipeline = StubPipeline()
    scheduler = IngestionScheduler(pipeline, 60, poll_seconds=30)
    timer = threading.Timer(0.05, cancel_event.set)

    timer.start()
    started = time.monotonic()
    try:
        scheduler.start(cancel_event)
    finally:
        timer.cancel()

    assert time.monotonic() - started < 5
    assert pipeline.calls == ["full"]
    assert scheduler.state is SchedulerState.STOPPED


def test_scheduler_survives_failed_runs():
    holder: dict[str, IngestionScheduler] = {}

    def on_run(count, _cancel_event):
        if count == 1:
            raise RuntimeError("database unavailable")
        holder["scheduler"].stop()

    pipeline = StubPipeline(on_run)
    scheduler = holder["scheduler"] = _scheduler(pipeline)

    scheduler.start()

    assert len(pipeline.calls) == 2
    assert scheduler.runs_completed == 2


def test_scheduler_stops_on_cancelled_run():
    def on_run(count, _cancel_event):
        raise IngestionCancelled("polymarket: fetch cancelled")

    pipeline = StubPipeline(on_run)
    scheduler = _scheduler(pipeline)

    scheduler.start()

    assert pipeline.calls == ["full"]
    assert scheduler.runs_completed == 0


def test_overrunning_run_delays_next_tick():
    holder: dict[str, IngestionScheduler] = {}

    def on_run(count, _cancel_event):
        if count == 1:
            time.sleep(0.1)
        else:
            holder["scheduler"].stop()

    pipeline = StubPipeline(on_run)
    scheduler = holder["scheduler"] = _scheduler(pipeline, interval=0.02)

    scheduler.start()

    assert len(pipeline.calls) == 2
    assert pipeline.started_at[1] - pipeline.started_at[0] >= 0.1


def test_start_while_running_raises():
    holder: dict[str, IngestionScheduler] = {}
    errors: list[Exception] = []

    def on_run(count, _cancel_event):
        try:
            holder["scheduler"].start()
        except RuntimeError as exc:
            errors.append(exc)
        assert holder["scheduler"].state is SchedulerState.RUNNING
        holder["scheduler"].stop()

    scheduler = holder["scheduler"] = _scheduler(StubPipeline(on_run))

    scheduler.start()

    assert len(errors) == 1
    assert "already running" in str(errors[0])


def test_stop_when_not_running_is_a_no_op():
    holder: dict[str, IngestionScheduler] = {}

    def on_run(count, _cancel_event):
        holder["scheduler"].stop()

    pipeline = StubPipeline(on_run)
    scheduler = holder["scheduler"] = _scheduler(pipeline)

    scheduler.stop()
    scheduler.start()
    scheduler.start()

    assert pipeline.calls == ["full", "full"]


def test_scheduler_mode_selects_pipeline_run():
    holder: dict[str, IngestionScheduler] = {}

    def on_run(count, _cancel_event):
        holder["scheduler"].stop()

    pipeline = StubPipeline(on_run)
    scheduler = holder["scheduler"] = _scheduler(pipeline, mode="news")

    scheduler.start()

    assert pipeline.calls == ["news"]


@pytest.mark.parametrize("interval", [0, -5])
def test_scheduler_rejects_non_positive_interval(interval):
    with pytest.raises(ValueError):
        IngestionScheduler(StubPipeline(), interval)


def test_scheduler_rejects_unknown_mode():
    with pytest.raises(ValueError):
        IngestionScheduler(StubPipeline(), 5, mode="weekly")
