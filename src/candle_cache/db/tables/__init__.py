"""Import all table modules so Base.metadata knows about them."""

from candle_cache.db.tables.candles import CacheCandleRow, CacheParamRow
from candle_cache.db.tables.markets import MarketGroupRow, MarketRow, ResourceRow
from candle_cache.db.tables.prices import MarketPriceRow, ResourcePriceRow

__all__ = [
    "CacheCandleRow",
    "CacheParamRow",
    "MarketGroupRow",
    "MarketPriceRow",
    "MarketRow",
    "ResourcePriceRow",
    "ResourceRow",
]
