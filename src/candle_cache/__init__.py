"""Candle cache engine — OHLC candles from index ticks and trade fills."""

__version__ = "0.1.0"
