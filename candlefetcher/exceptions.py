"""
Exception hierarchy for the candlestick fetcher

Startup errors (configuration, store connection, quote authentication) abort
the run. Everything raised while a job is running is absorbed by the worker
pool and only shows up in the counters and the logs.
"""

from typing import Any, Dict, Optional


class CandleFetcherError(Exception):
    """Base class for all fetcher errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(CandleFetcherError):
    """Configuration could not be read, parsed or validated"""


class QuoteServiceError(CandleFetcherError):
    """A single remote quote call failed"""


class QuoteAuthenticationError(QuoteServiceError):
    """The quote context could not be created with the configured credentials"""


class RetryExhaustedError(CandleFetcherError):
    """Every allowed attempt of a remote call failed"""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None):
        super().__init__(message, {'attempts': attempts})
        self.attempts = attempts
        self.last_error = last_error


class StoreConnectionError(CandleFetcherError):
    """The relational store is unreachable"""


class TableCreationError(CandleFetcherError):
    """The destination table for a symbol could not be ensured"""

    def __init__(self, message: str, symbol: str, table_name: str):
        super().__init__(message, {'symbol': symbol, 'table_name': table_name})
        self.symbol = symbol
        self.table_name = table_name


class PersistenceError(CandleFetcherError):
    """A batch of records could not be written (e.g. connection lost)"""
