"""Typed failures raised by the candle cache engine."""

from __future__ import annotations


class CandleCacheError(Exception):
    """Base class for every failure the engine raises on purpose."""


class MarketNotFoundError(CandleCacheError):
    """An observation references a market the metadata cache does not know.

    Signals a desynchronisation between the market directory and ingestion.
    """

    def __init__(self, message: str, *, market_idx: int | None = None) -> None:
        super().__init__(message)
        self.market_idx = market_idx


class ObservationParseError(CandleCacheError):
    """A decimal string on an observation could not be parsed."""

    def __init__(self, field: str, value: object) -> None:
        super().__init__(f"Cannot parse {field}={value!r} as a decimal number")
        self.field = field
        self.value = value


class PersistenceError(CandleCacheError):
    """The candle store failed to read or write a candle."""


def describe_error(exc: BaseException) -> str:
    """One-line ``Type: message`` summary for status surfaces."""
    message = str(exc)
    name = type(exc).__name__
    return f"{name}: {message}" if message else name
