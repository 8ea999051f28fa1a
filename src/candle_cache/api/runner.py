#!/usr/bin/env python3
"""API server runner: ``candle-cache-api [--config path] [--host H] [--port N]``."""

import argparse
import os

import structlog
import uvicorn

from candle_cache.config.loader import load_config
from candle_cache.logging.setup import setup_logging

logger = structlog.get_logger("api")


def main(argv: list[str] | None = None) -> None:
    """Run the FastAPI server; the app module reads its config from CANDLE_CACHE_CONFIG."""
    parser = argparse.ArgumentParser(description="Candle cache API server")
    parser.add_argument("--config", default=os.environ.get("CANDLE_CACHE_CONFIG"), help="Path to config.yaml")
    parser.add_argument("--host", default=None, help="Bind address (default: api.host)")
    parser.add_argument("--port", type=int, default=None, help="Port (default: api.port)")
    args = parser.parse_args(argv)

    if args.config:
        os.environ["CANDLE_CACHE_CONFIG"] = args.config
    config = load_config(args.config)
    setup_logging(level=config.logging.level, log_format=config.logging.format, service="api")

    host = args.host or config.api.host
    port = args.port or config.api.port
    logger.info("api_server_starting", host=host, port=port, builder_process=config.builder_process)

    try:
        uvicorn.run(
            "candle_cache.api.app:app",
            host=host,
            port=port,
            log_config=None,  # keep the structlog handler installed above
        )
    except Exception:
        logger.exception("api_server_failed")
        raise


if __name__ == "__main__":
    main()
