"""In-memory table of the currently-open candle per (candle type, market, interval)."""

from __future__ import annotations

from collections.abc import Iterator

from candle_cache.models.candle import Candle, CandleType


class RuntimeCandleStore:
    """Write-through slots for open candles. No eviction.

    The durable copy lives in the candle repository; a slot only holds the
    bucket still accepting observations.
    """

    def __init__(self) -> None:
        self._slots: dict[tuple[CandleType, int, int], Candle] = {}

    def __len__(self) -> int:
        return len(self._slots)

    def get(
        self,
        market_idx: int,
        interval: int,
        candle_type: CandleType = CandleType.INDEX,
    ) -> Candle | None:
        return self._slots.get((candle_type, market_idx, interval))

    def set(
        self,
        market_idx: int,
        interval: int,
        candle: Candle,
        candle_type: CandleType = CandleType.INDEX,
    ) -> None:
        self._slots[(candle_type, market_idx, interval)] = candle

    def clear(
        self,
        market_idx: int,
        interval: int,
        candle_type: CandleType = CandleType.INDEX,
    ) -> None:
        self._slots.pop((candle_type, market_idx, interval), None)

    def candles(self) -> Iterator[Candle]:
        """Snapshot iterator over every open candle."""
        yield from list(self._slots.values())
