"""Job construction, remote fetch and record conversion"""

from .task_builder import build_jobs
from .candle_converter import to_records
from .longport_fetcher import LongportCandleFetcher

__all__ = ['build_jobs', 'to_records', 'LongportCandleFetcher']
