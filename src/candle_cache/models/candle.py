"""Candle model shared by the runtime store, the aggregator and persistence."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class CandleType(str, Enum):
    INDEX = "index"
    MARKET = "market"


class Candle(BaseModel):
    """One OHLC bucket; prices and sums are decimal strings.

    ``timestamp`` is always aligned to ``interval``. ``id`` is set once the
    durable row exists.
    """

    candle_type: CandleType
    interval: int
    market_idx: int
    resource_slug: str
    timestamp: int
    end_timestamp: int
    last_updated_timestamp: int = 0
    open: str = "0"
    high: str = "0"
    low: str = "0"
    close: str = "0"
    sum_fee_paid: str | None = None
    sum_used: str | None = None
    market_id: int | None = None
    address: str | None = None
    chain_id: int | None = None
    id: int | None = None

    @property
    def key(self) -> tuple[str, int, int, str, int]:
        return (
            self.candle_type.value,
            self.interval,
            self.market_idx,
            self.resource_slug,
            self.timestamp,
        )
