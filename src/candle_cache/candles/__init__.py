"""Candle engine — metadata cache, runtime store, aggregation."""

from candle_cache.candles.aggregator import CandleAggregator
from candle_cache.candles.intervals import Bucket, candle_interval, parse_interval
from candle_cache.candles.market_info import MarketInfoStore
from candle_cache.candles.runtime_store import RuntimeCandleStore

__all__ = [
    "Bucket",
    "CandleAggregator",
    "MarketInfoStore",
    "RuntimeCandleStore",
    "candle_interval",
    "parse_interval",
]
