"""Allow running the worker as: python -m candle_cache.worker [--config path] [--interval N] [--rebuild SCOPE]."""

from candle_cache.worker.runner import cli

cli()
