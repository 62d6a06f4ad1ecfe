"""Bulk historical candlestick fetcher for LongPort quotes into PostgreSQL"""

__version__ = "0.1.0"
