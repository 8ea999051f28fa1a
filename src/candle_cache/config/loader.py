"""Config loader — reads YAML, applies CANDLE_CACHE_* env var overrides."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from candle_cache.config.schema import AppConfig


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from a YAML file, then apply env var overrides.

    If *path* is None or the file doesn't exist, returns defaults.

    Environment variable overrides:
        CANDLE_CACHE_DATABASE_URL      -> database.url
        CANDLE_CACHE_LOG_LEVEL         -> logging.level
        CANDLE_CACHE_LOG_FORMAT        -> logging.format
        CANDLE_CACHE_BUILDER_INTERVAL  -> builder.interval_seconds
    """
    data: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}

    db_url = os.environ.get("CANDLE_CACHE_DATABASE_URL")
    if db_url:
        data.setdefault("database", {})["url"] = db_url

    log_level = os.environ.get("CANDLE_CACHE_LOG_LEVEL")
    if log_level:
        data.setdefault("logging", {})["level"] = log_level

    log_format = os.environ.get("CANDLE_CACHE_LOG_FORMAT")
    if log_format:
        data.setdefault("logging", {})["format"] = log_format

    builder_interval = os.environ.get("CANDLE_CACHE_BUILDER_INTERVAL")
    if builder_interval:
        data.setdefault("builder", {})["interval_seconds"] = int(builder_interval)

    return AppConfig.model_validate(data)
