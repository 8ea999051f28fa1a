"""Configuration: YAML file plus CANDLE_CACHE_* environment overrides."""

from candle_cache.config.loader import load_config
from candle_cache.config.schema import AppConfig, DEFAULT_INTERVALS

__all__ = ["AppConfig", "DEFAULT_INTERVALS", "load_config"]
