"""Utility modules for the candlestick fetcher"""

from .async_logger import AsyncLogger, setup_async_logger, get_async_logger
from .rate_limiter import RateLimiter
from .retry_handler import RetryHandler
from .fetch_metrics import FetchCounters, FetchMetricsTracker, FailureReason

__all__ = [
    'AsyncLogger',
    'RateLimiter',
    'RetryHandler',
    'FetchCounters',
    'FetchMetricsTracker',
    'FailureReason',
    'setup_async_logger',
    'get_async_logger'
]
