"""Service container — wires the process-wide candle engine objects together."""

from __future__ import annotations

import asyncio
import time

import structlog
from sqlalchemy.orm import Session

from candle_cache.candles.aggregator import CandleAggregator
from candle_cache.candles.builder import CandleCacheBuilder
from candle_cache.candles.market_info import MarketInfoStore
from candle_cache.candles.rebuild import RebuildOrchestrator, SessionFactory
from candle_cache.candles.repository import SqlCandleRepository
from candle_cache.candles.runtime_store import RuntimeCandleStore
from candle_cache.candles.status import CandleCacheStatusReporter
from candle_cache.config.schema import AppConfig

log = structlog.get_logger("candle_cache_service")


class CandleCacheService:
    """Constructed once per process and passed by reference to whoever needs it.

    *session* backs the live path (builder + live repository); rebuild jobs
    open their own sessions through *session_factory* for reading history.
    """

    def __init__(
        self,
        config: AppConfig,
        session: Session,
        session_factory: SessionFactory,
    ) -> None:
        self.config = config
        self.session = session
        self.market_info = MarketInfoStore()
        self.runtime = RuntimeCandleStore()
        self.repository = SqlCandleRepository(session)
        self.aggregator = CandleAggregator(
            market_info=self.market_info,
            runtime=self.runtime,
            repository=self.repository,
            intervals=config.candles.intervals,
        )
        self.builder = CandleCacheBuilder(
            session,
            self.aggregator,
            batch_size=config.builder.batch_size,
        )
        self.orchestrator = RebuildOrchestrator(
            self.aggregator,
            session_factory,
            batch_size=config.rebuild.batch_size,
            batch_log_interval=config.rebuild.batch_log_interval,
        )
        self.status = CandleCacheStatusReporter(self.orchestrator, self.builder)

    async def run_builder(self, interval_seconds: int | None = None) -> None:
        """Run the live builder forever on a fixed cadence."""
        interval_s = interval_seconds or self.config.builder.interval_seconds
        log.info("candle_builder_started", interval_s=interval_s, intervals=self.aggregator.intervals)

        while True:
            cycle_start = time.monotonic()
            try:
                self.builder.build_candles()
            except Exception:
                log.exception("candle_build_cycle_error")

            duration = time.monotonic() - cycle_start
            if duration > interval_s:
                log.warning("candle_build_cycle_overrun", duration_s=round(duration, 1), interval_s=interval_s)
            else:
                log.debug("candle_build_cycle", duration_s=round(duration, 1))

            await asyncio.sleep(interval_s)
