"""Pydantic domain models."""

from candle_cache.models.candle import Candle, CandleType
from candle_cache.models.market import (
    MarketEntry,
    MarketGroup,
    MarketInfo,
    MarketPriceObservation,
    PriceObservation,
)
from candle_cache.models.status import (
    AllBuildersStatus,
    BuilderState,
    BuilderStatus,
    JobState,
    RebuilderStatus,
    RebuildJob,
    RebuildProgress,
    StartResult,
)

__all__ = [
    "AllBuildersStatus",
    "BuilderState",
    "BuilderStatus",
    "Candle",
    "CandleType",
    "JobState",
    "MarketEntry",
    "MarketGroup",
    "MarketInfo",
    "MarketPriceObservation",
    "PriceObservation",
    "RebuilderStatus",
    "RebuildJob",
    "RebuildProgress",
    "StartResult",
]
