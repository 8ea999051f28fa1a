"""Live candle builder — incremental pass over observations newer than the checkpoint."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy.orm import Session

from candle_cache.candles.aggregator import CandleAggregator
from candle_cache.candles.history import (
    Cursor,
    ObservationHistory,
    decode_cursor,
    encode_cursor,
    load_market_groups,
)
from candle_cache.candles.repository import get_param, set_param
from candle_cache.errors import CandleCacheError, PersistenceError, describe_error
from candle_cache.models.status import BuilderState, BuilderStatus

log = structlog.get_logger("candle_builder")

RESOURCE_PRICE_CURSOR = "lastProcessedResourcePrice"
MARKET_PRICE_CURSOR = "lastProcessedMarketPrice"


class CandleCacheBuilder:
    """Feeds new observations through the live aggregator, one at a time, in order.

    Failures tied to a single observation (unknown market, malformed decimal)
    are logged and counted and the stream moves on. Persistence failures stop
    the cycle with the cursor left on the last applied observation, so the
    next cycle retries from there.
    """

    def __init__(
        self,
        session: Session,
        aggregator: CandleAggregator,
        batch_size: int = 1000,
    ) -> None:
        self.session = session
        self.aggregator = aggregator
        self.history = ObservationHistory(session)
        self.batch_size = batch_size
        self._status = BuilderStatus()
        self._warmed = False
        self._resource_cursor: Cursor | None = None
        self._market_cursor: Cursor | None = None

    @property
    def status(self) -> BuilderStatus:
        return self._status.model_copy()

    def _set_status(self, state: BuilderState, description: str) -> None:
        self._status.status = state
        self._status.description = description
        self._status.timestamp = datetime.now(timezone.utc)

    def _load_cursors(self) -> None:
        self._resource_cursor = decode_cursor(get_param(self.session, RESOURCE_PRICE_CURSOR))
        self._market_cursor = decode_cursor(get_param(self.session, MARKET_PRICE_CURSOR))

    def _save_cursors(self) -> None:
        set_param(self.session, RESOURCE_PRICE_CURSOR, encode_cursor(self._resource_cursor))
        set_param(self.session, MARKET_PRICE_CURSOR, encode_cursor(self._market_cursor))

    def build_candles(self) -> BuilderStatus:
        """Run one incremental cycle and return the resulting status."""
        try:
            self._set_status(BuilderState.PROCESSING, "Refreshing market directory")
            self.aggregator.market_info.refresh(load_market_groups(self.session))
            if not self._warmed:
                self._load_cursors()
                self.aggregator.warm_start()
                self._warmed = True

            self._set_status(BuilderState.PROCESSING, "Processing resource prices")
            prices = self._process_resource_prices()
            self._set_status(BuilderState.PROCESSING, "Processing market prices")
            trades = self._process_market_prices()

            flushed = self.aggregator.flush_open()
            self._save_cursors()
        except Exception as exc:
            self._status.errors += 1
            self._set_status(BuilderState.ERROR, describe_error(exc))
            log.exception("candle_build_failed")
            raise

        self._status.cycles += 1
        self._set_status(
            BuilderState.IDLE,
            f"Processed {prices} resource prices and {trades} market prices",
        )
        log.info(
            "candle_build_completed",
            resource_prices=prices,
            market_prices=trades,
            open_candles_flushed=flushed,
            late_observations=self.aggregator.stats.late_observations,
            applied_observations=self.aggregator.stats.applied_observations,
        )
        return self.status

    def _process_resource_prices(self) -> int:
        processed = 0
        while True:
            batch = self.history.resource_prices(after=self._resource_cursor, limit=self.batch_size)
            if not batch:
                return processed
            for price in batch:
                try:
                    self.aggregator.process_resource_price(price)
                except PersistenceError:
                    raise
                except CandleCacheError:
                    self._status.errors += 1
                    log.exception(
                        "resource_price_rejected",
                        resource_slug=price.resource_slug,
                        timestamp=price.timestamp,
                        price_id=price.id,
                    )
                self._resource_cursor = (price.timestamp, price.id or 0)
                self._status.last_processed_timestamp = price.timestamp
                self._status.observations_processed += 1
                processed += 1

    def _process_market_prices(self) -> int:
        processed = 0
        while True:
            batch = self.history.market_prices(after=self._market_cursor, limit=self.batch_size)
            if not batch:
                return processed
            for trade in batch:
                try:
                    self.aggregator.process_market_price(trade)
                except PersistenceError:
                    raise
                except CandleCacheError:
                    self._status.errors += 1
                    log.exception(
                        "market_price_rejected",
                        chain_id=trade.chain_id,
                        address=trade.address,
                        market_id=trade.market_id,
                        price_id=trade.id,
                    )
                self._market_cursor = (trade.timestamp, trade.id or 0)
                self._status.trades_processed += 1
                processed += 1
