"""Live candle cache worker and one-off rebuild command."""

from candle_cache.worker.runner import cli, main, run_rebuild, run_worker

__all__ = ["cli", "main", "run_rebuild", "run_worker"]
