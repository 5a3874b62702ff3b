from __future__ import annotations

import argparse
import json
import signal
import sys
import threading
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from app.core.config import Settings, get_settings
from app.db import build_db_components, init_db
from app.repositories import IngestionStore, SqlIngestionStore
from ingestion.pipeline import IngestionPipeline, IngestionReport
from ingestion.scheduler import IngestionScheduler


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest prediction-market and news data")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run a single ingestion pass and exit",
    )
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument(
        "--markets-only",
        action="store_true",
        help="Ingest only market data",
    )
    scope.add_argument(
        "--news-only",
        action="store_true",
        help="Ingest only news data",
    )
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Write the JSON report of the last completed run to the specified path",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between scheduled runs (defaults to INGESTION_INTERVAL)",
    )
    return parser.parse_args(argv)


def _configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)


def _resolve_mode(args: argparse.Namespace) -> str:
    if args.markets_only:
        return "markets"
    if args.news_only:
        return "news"
    return "full"


def _build_pipeline(settings: Settings, store: IngestionStore) -> IngestionPipeline:
    return IngestionPipeline(settings, store)


def _write_summary(path: Path, report: IngestionReport) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(report.to_dict(), indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )


def run_once(
    pipeline: IngestionPipeline,
    mode: str,
    cancel_event: threading.Event | None = None,
) -> IngestionReport:
    if mode == "markets":
        return pipeline.run_market_ingestion(cancel_event)
    if mode == "news":
        return pipeline.run_news_ingestion(cancel_event)
    return pipeline.run_full_ingestion(cancel_event)


def run_continuous(
    pipeline: IngestionPipeline,
    mode: str,
    interval_seconds: float,
    cancel_event: threading.Event,
) -> IngestionScheduler:
    scheduler = IngestionScheduler(pipeline, interval_seconds, mode=mode)

    def _handle_shutdown(signum, frame) -> None:  # noqa: ARG001
        # No logging inside signal handlers.
        scheduler.stop()
        cancel_event.set()

    previous = {
        signum: signal.signal(signum, _handle_shutdown)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        scheduler.start(cancel_event)
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    if cancel_event.is_set():
        logger.info("Shutdown signal received, ingestion stopped gracefully")
    return scheduler


def main(argv: Sequence[str] | None = None, *, settings: Settings | None = None) -> None:
    args = _parse_args(argv)
    settings = settings or get_settings()
    _configure_logging(settings)
    mode = _resolve_mode(args)

    logger.info("=== Market & news ingestion service ===")
    engine, session_factory = build_db_components(settings)
    try:
        init_db(engine)
        pipeline = _build_pipeline(settings, SqlIngestionStore(session_factory))
        with pipeline:
            if args.dry_run:
                logger.info("=== DRY RUN MODE ({}) ===", mode)
                report = run_once(pipeline, mode)
                if args.summary_path:
                    _write_summary(args.summary_path, report)
                    logger.info("Wrote ingestion summary to {}", args.summary_path)
                if report.failed_sources:
                    logger.warning(
                        "Dry run completed with failed sources: {}",
                        ", ".join(report.failed_sources),
                    )
                logger.info("Dry run complete")
                return

            interval = args.interval if args.interval is not None else settings.ingestion_interval
            if interval <= 0:
                raise SystemExit("--interval must be positive")
            scheduler = run_continuous(pipeline, mode, interval, threading.Event())
            if args.summary_path and scheduler.last_report is not None:
                _write_summary(args.summary_path, scheduler.last_report)
                logger.info("Wrote ingestion summary to {}", args.summary_path)
    finally:
        engine.dispose()

    logger.info("Ingestion service stopped")


if __name__ == "__main__":
    main()
