"""
Task set construction

Expands the configured symbols and dates into the flat list of jobs the
worker pool drains.
"""

from datetime import date
from typing import Iterable, List

from candlefetcher.models.data_models import Job


def build_jobs(symbols: Iterable[str], dates: Iterable[date]) -> List[Job]:
    """
    Cross product of symbols and dates, symbol-major

    Repeated entries in either input are collapsed so every (symbol, date)
    pair appears exactly once. Empty inputs give an empty list.
    """
    unique_symbols = list(dict.fromkeys(symbols))
    unique_dates = list(dict.fromkeys(dates))
    return [Job(symbol=symbol, date=day) for symbol in unique_symbols for day in unique_dates]
