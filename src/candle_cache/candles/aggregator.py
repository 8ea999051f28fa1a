"""Candle aggregator — applies one observation to every affected (market, interval) candle.

Index candles carry ``sum_fee_paid`` / ``sum_used`` forward across buckets
forever, so each tick's price is the whole-history weighted average
``sum_fee_paid // sum_used`` and open/high/low/close are usually equal.
Existing consumers depend on this; do not make the average bucket-local.

Each observation is applied in two phases: a plan phase that does all the
repository I/O (flushing closed candles, get-or-create of new ones) without
touching the runtime store, then a synchronous apply phase. A persistence
failure therefore leaves every open candle exactly as it was and the same
observation can be retried.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

import structlog

from candle_cache.candles.intervals import Bucket, candle_interval
from candle_cache.candles.market_info import MarketInfoStore
from candle_cache.candles.repository import CandleRepository
from candle_cache.candles.runtime_store import RuntimeCandleStore
from candle_cache.errors import MarketNotFoundError, ObservationParseError
from candle_cache.models.candle import Candle, CandleType
from candle_cache.models.market import MarketInfo, MarketPriceObservation, PriceObservation

log = structlog.get_logger("candle_aggregator")


# ── Arithmetic ────────────────────────────────────────────────


_PLAIN_DECIMAL = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


def parse_decimal(value: object, field: str) -> Decimal:
    """Parse a plain decimal string without going through float.

    Exponent notation is rejected: ``int()`` of ``"1e100000000"`` would build
    a hundred-million-digit integer.
    """
    text = str(value).strip()
    if not _PLAIN_DECIMAL.fullmatch(text):
        raise ObservationParseError(field, value)
    try:
        return Decimal(text)
    except InvalidOperation as exc:
        raise ObservationParseError(field, value) from exc


def parse_integer(value: object, field: str) -> int:
    """Parse a decimal string and floor it to an arbitrary-precision int."""
    number = parse_decimal(value, field)
    result = int(number)  # truncates toward zero, exact at any size
    if number < 0 and number != result:
        result -= 1
    return result


def _div_trunc(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator >= 0) else -quotient


def cumulative_average(
    prev: Candle | None,
    fee_paid: int,
    used: int,
) -> tuple[int, int, int]:
    """Return ``(sum_fee_paid, sum_used, average)`` after adding one tick to *prev*'s sums."""
    prev_fee_paid = parse_integer(prev.sum_fee_paid or "0", "sum_fee_paid") if prev else 0
    prev_used = parse_integer(prev.sum_used or "0", "sum_used") if prev else 0
    sum_fee_paid = prev_fee_paid + fee_paid
    sum_used = prev_used + used
    average = _div_trunc(sum_fee_paid, sum_used) if sum_used > 0 else 0
    return sum_fee_paid, sum_used, average


# ── Aggregator ────────────────────────────────────────────────


@dataclass
class AggregatorStats:
    observations: int = 0
    trades: int = 0
    candles_flushed: int = 0
    late_observations: int = 0
    applied_observations: int = 0


@dataclass
class _SlotUpdate:
    candle_type: CandleType
    market_idx: int
    interval: int
    candle: Candle | None  # None clears the slot


class CandleAggregator:
    """Streaming OHLC aggregation over a runtime store and a candle repository.

    ``lock`` guards the runtime store and the repository keyspace; a rebuild
    publishing its results takes the same lock.
    """

    def __init__(
        self,
        market_info: MarketInfoStore,
        runtime: RuntimeCandleStore,
        repository: CandleRepository,
        intervals: Sequence[int],
        lock: threading.RLock | None = None,
    ) -> None:
        if not intervals:
            raise ValueError("CandleAggregator needs at least one interval")
        self.market_info = market_info
        self.runtime = runtime
        self.repository = repository
        self.intervals = list(intervals)
        self.lock = lock if lock is not None else threading.RLock()
        self.stats = AggregatorStats()

    # ── Index candles ─────────────────────────────────────────

    def process_resource_price(self, price: PriceObservation) -> None:
        """Apply one index tick to every market of its resource, for every interval."""
        fee_paid = parse_integer(price.fee_paid, "fee_paid")
        used = parse_integer(price.used, "used")

        with self.lock:
            updates: list[_SlotUpdate] = []
            for market_idx in self.market_info.all_indexes_for_resource(price.resource_slug):
                info = self.market_info.get(market_idx)
                if info is None:
                    raise MarketNotFoundError(f"Market {market_idx} not found", market_idx=market_idx)
                is_active = info.is_active(price.timestamp)
                for interval in self.intervals:
                    update = self._plan_index(info, interval, price, fee_paid, used, is_active)
                    if update is not None:
                        updates.append(update)
            self._apply(updates)
            self.stats.observations += 1

    def _plan_index(
        self,
        info: MarketInfo,
        interval: int,
        price: PriceObservation,
        fee_paid: int,
        used: int,
        is_active: bool,
    ) -> _SlotUpdate | None:
        bucket = candle_interval(price.timestamp, interval)
        candle = self.runtime.get(info.market_idx, interval, CandleType.INDEX)

        if candle is None:
            if not is_active:
                return None
            new = self._new_index_candle(info, interval, bucket, price, fee_paid, used, prev=None)
            return _SlotUpdate(CandleType.INDEX, info.market_idx, interval, new)

        if candle.timestamp < bucket.start:
            self._flush(candle)
            new = None
            if is_active:
                new = self._new_index_candle(info, interval, bucket, price, fee_paid, used, prev=candle)
            return _SlotUpdate(CandleType.INDEX, info.market_idx, interval, new)

        if candle.timestamp > bucket.start:
            self._skip_late(candle, bucket, price.timestamp)
            return None

        # A resource has at most one tick per timestamp, so anything at or
        # before the slot's last tick is already in its sums.
        if price.timestamp <= candle.last_updated_timestamp:
            self._skip_applied(candle, price.timestamp)
            return None

        if not is_active:
            return None

        sum_fee_paid, sum_used, average = cumulative_average(candle, fee_paid, used)
        updated = candle.model_copy(
            update={
                "high": str(average),
                "low": str(average),
                "close": str(average),
                "last_updated_timestamp": price.timestamp,
                "sum_fee_paid": str(sum_fee_paid),
                "sum_used": str(sum_used),
            }
        )
        return _SlotUpdate(CandleType.INDEX, info.market_idx, interval, updated)

    def _new_index_candle(
        self,
        info: MarketInfo,
        interval: int,
        bucket: Bucket,
        price: PriceObservation,
        fee_paid: int,
        used: int,
        prev: Candle | None,
    ) -> Candle:
        sum_fee_paid, sum_used, average = cumulative_average(prev, fee_paid, used)
        candle = self.repository.get_or_create(
            CandleType.INDEX, interval, info.market_idx, price.resource_slug, bucket.start
        )
        avg = str(average)
        return candle.model_copy(
            update={
                "market_id": info.market_id,
                "address": info.market_group_address,
                "chain_id": info.market_group_chain_id,
                "end_timestamp": bucket.end,
                "last_updated_timestamp": price.timestamp,
                "open": avg,
                "high": avg,
                "low": avg,
                "close": avg,
                "sum_fee_paid": str(sum_fee_paid),
                "sum_used": str(sum_used),
            }
        )

    # ── Trade candles ─────────────────────────────────────────

    def process_market_price(self, trade: MarketPriceObservation) -> None:
        """Apply one trade fill to its market's trade candles."""
        price = parse_decimal(trade.value, "value")
        info = self.market_info.get_by_chain_and_address(trade.chain_id, trade.address, trade.market_id)
        if info is None:
            raise MarketNotFoundError(
                f"Market {trade.market_id} not found on chain {trade.chain_id} at {trade.address}"
            )

        with self.lock:
            updates: list[_SlotUpdate] = []
            for interval in self.intervals:
                update = self._plan_trade(info, interval, trade, price)
                if update is not None:
                    updates.append(update)
            self._apply(updates)
            self.stats.trades += 1

    def _plan_trade(
        self,
        info: MarketInfo,
        interval: int,
        trade: MarketPriceObservation,
        price: Decimal,
    ) -> _SlotUpdate | None:
        bucket = candle_interval(trade.timestamp, interval)
        candle = self.runtime.get(info.market_idx, interval, CandleType.MARKET)
        value = str(price)

        if candle is None or candle.timestamp < bucket.start:
            open_ = value
            high = low = price
            if candle is not None:
                self._flush(candle)
                open_ = candle.close
                prev_close = Decimal(candle.close)
                high, low = max(prev_close, price), min(prev_close, price)
            stored = self.repository.get_or_create(
                CandleType.MARKET, interval, info.market_idx, info.resource_slug, bucket.start
            )
            new = stored.model_copy(
                update={
                    "market_id": info.market_id,
                    "address": info.market_group_address,
                    "chain_id": info.market_group_chain_id,
                    "end_timestamp": bucket.end,
                    "last_updated_timestamp": trade.timestamp,
                    "open": open_,
                    "high": str(high),
                    "low": str(low),
                    "close": value,
                }
            )
            return _SlotUpdate(CandleType.MARKET, info.market_idx, interval, new)

        if candle.timestamp > bucket.start:
            self._skip_late(candle, bucket, trade.timestamp)
            return None

        updated = candle.model_copy(
            update={
                "high": str(max(Decimal(candle.high), price)),
                "low": str(min(Decimal(candle.low), price)),
                "close": value,
                "last_updated_timestamp": trade.timestamp,
            }
        )
        return _SlotUpdate(CandleType.MARKET, info.market_idx, interval, updated)

    # ── Shared helpers ────────────────────────────────────────

    def _apply(self, updates: list[_SlotUpdate]) -> None:
        for update in updates:
            if update.candle is None:
                self.runtime.clear(update.market_idx, update.interval, update.candle_type)
            else:
                self.runtime.set(update.market_idx, update.interval, update.candle, update.candle_type)

    def _flush(self, candle: Candle) -> None:
        self.repository.save(candle)
        self.stats.candles_flushed += 1
        log.debug(
            "candle_flushed",
            candle_type=candle.candle_type.value,
            market_idx=candle.market_idx,
            interval=candle.interval,
            timestamp=candle.timestamp,
        )

    def _skip_late(self, candle: Candle, bucket: Bucket, timestamp: int) -> None:
        self.stats.late_observations += 1
        log.warning(
            "late_observation_skipped",
            candle_type=candle.candle_type.value,
            market_idx=candle.market_idx,
            interval=candle.interval,
            open_bucket=candle.timestamp,
            observation_bucket=bucket.start,
            observation_timestamp=timestamp,
        )

    def _skip_applied(self, candle: Candle, timestamp: int) -> None:
        self.stats.applied_observations += 1
        log.debug(
            "applied_observation_skipped",
            market_idx=candle.market_idx,
            interval=candle.interval,
            last_updated_timestamp=candle.last_updated_timestamp,
            observation_timestamp=timestamp,
        )

    def flush_open(self) -> int:
        """Persist every open candle without closing it; return how many were saved."""
        with self.lock:
            count = 0
            for candle in self.runtime.candles():
                saved = self.repository.save(candle)
                self.runtime.set(saved.market_idx, saved.interval, saved, saved.candle_type)
                count += 1
            return count

    def warm_start(self) -> int:
        """Seed empty slots from the latest persisted candle of each (market, interval).

        Keeps cumulative sums continuous across process restarts.
        """
        with self.lock:
            seeded = 0
            for market_idx in self.market_info.all_market_indexes():
                for interval in self.intervals:
                    for candle_type in CandleType:
                        if self.runtime.get(market_idx, interval, candle_type) is not None:
                            continue
                        latest = self.repository.latest(candle_type, interval, market_idx)
                        if latest is None:
                            continue
                        self.runtime.set(market_idx, interval, latest, candle_type)
                        seeded += 1
            if seeded:
                log.info("runtime_store_warmed", candles=seeded)
            return seeded
