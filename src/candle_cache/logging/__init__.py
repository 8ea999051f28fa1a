"""structlog configuration shared by the worker and the API."""

from candle_cache.logging.setup import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
