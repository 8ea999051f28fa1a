"""Worker runner — owns the DB session and drives the live builder loop or a one-off rebuild."""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from candle_cache.config.loader import load_config
from candle_cache.config.schema import AppConfig
from candle_cache.db.engine import dispose_engine, get_session, init_engine, session_scope
from candle_cache.logging.setup import setup_logging
from candle_cache.models.status import ALL_SCOPE, JobState, RebuildJob, scope_key
from candle_cache.service import CandleCacheService

log = structlog.get_logger("worker")


async def run_worker(config: AppConfig, interval_seconds: int | None = None) -> None:
    """Build candles on a fixed cadence until cancelled.

    Returns at once when the config hands the live builder to the API or
    disables it.
    """
    if config.builder_process != "worker":
        log.warning("worker_builder_disabled", builder_process=config.builder_process)
        return
    init_engine(config.database.url)
    session_gen = get_session()
    session = next(session_gen)
    try:
        service = CandleCacheService(config, session, session_scope)
        await service.run_builder(interval_seconds)
    finally:
        session_gen.close()
        dispose_engine()


async def run_rebuild(config: AppConfig, scope: str = ALL_SCOPE) -> RebuildJob | None:
    """Rebuild ``all`` or one resource slug and wait for the job to finish."""
    init_engine(config.database.url)
    session_gen = get_session()
    session = next(session_gen)
    try:
        service = CandleCacheService(config, session, session_scope)
        if scope == ALL_SCOPE:
            result = service.orchestrator.start_rebuild_all()
            key = ALL_SCOPE
        else:
            result = service.orchestrator.start_rebuild_resource(scope.lower())
            key = scope_key(scope.lower())
        if not result.success:
            log.error("rebuild_not_started", scope=key, reason=result.message)
            return None
        job = await service.orchestrator.wait(key)
        log.info("rebuild_finished", scope=key, state=job.state.value, error=job.error)
        return job
    finally:
        session_gen.close()
        dispose_engine()


def main(
    config_path: str | None = None,
    interval_seconds: int | None = None,
    rebuild: str | None = None,
) -> int:
    """Entry point — load config, set up logging, run the async loop.

    Returns a process exit code: non-zero when a requested rebuild failed.
    """
    config = load_config(config_path)
    setup_logging(level=config.logging.level, log_format=config.logging.format, service="worker")
    if rebuild is not None:
        job = asyncio.run(run_rebuild(config, rebuild))
        return 0 if job is not None and job.state == JobState.COMPLETED else 1
    asyncio.run(run_worker(config, interval_seconds))
    return 0


def cli(argv: list[str] | None = None) -> None:
    """``candle-cache-worker [--config path] [--interval N] [--rebuild SCOPE]``."""
    parser = argparse.ArgumentParser(description="Candle cache worker")
    parser.add_argument("--config", default=None, help="Path to config.yaml")
    parser.add_argument("--interval", type=int, default=None, help="Seconds between build cycles")
    parser.add_argument(
        "--rebuild",
        metavar="SCOPE",
        default=None,
        help="Rebuild 'all' or one resource slug from stored history, then exit",
    )
    args = parser.parse_args(argv)
    if args.interval is not None and args.interval <= 0:
        parser.error("Invalid interval. Provide positive number of seconds.")
    sys.exit(main(config_path=args.config, interval_seconds=args.interval, rebuild=args.rebuild))
