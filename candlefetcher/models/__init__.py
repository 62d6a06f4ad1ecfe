"""Models for the candlestick fetcher"""

from .data_models import (
    Job,
    RawCandle,
    CandlestickRecord,
    RetryState,
    InsertResult,
    JobResult,
    JobStatus,
)

__all__ = [
    'Job',
    'RawCandle',
    'CandlestickRecord',
    'RetryState',
    'InsertResult',
    'JobResult',
    'JobStatus',
]
