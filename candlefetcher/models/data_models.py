"""
Data models for the candlestick fetcher

This module contains shared data models to avoid circular imports.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Union

Number = Union[Decimal, float, int]


@dataclass(frozen=True)
class Job:
    """One (symbol, date) unit of fetch-and-persist work"""
    symbol: str
    date: date

    def day_bounds(self) -> Tuple[datetime, datetime]:
        """Full calendar day in UTC: [00:00:00, 23:59:59]"""
        start = datetime.combine(self.date, time(0, 0, 0), tzinfo=timezone.utc)
        end = datetime.combine(self.date, time(23, 59, 59), tzinfo=timezone.utc)
        return start, end

    def __str__(self) -> str:
        return f"{self.symbol}@{self.date.isoformat()}"


@dataclass(frozen=True)
class RawCandle:
    """Candlestick as returned by the quote service, prices may be missing"""
    timestamp: int  # epoch seconds
    volume: int
    open: Optional[Number] = None
    close: Optional[Number] = None
    high: Optional[Number] = None
    low: Optional[Number] = None
    turnover: Optional[Number] = None


@dataclass(frozen=True)
class CandlestickRecord:
    """Validated OHLCV row ready for storage"""
    symbol: str
    timestamp: datetime
    open: float
    close: float
    high: float
    low: float
    volume: int
    turnover: float = 0.0

    def as_row(self) -> tuple:
        """Column order used by the insert statement"""
        return (
            self.timestamp,
            self.open,
            self.close,
            self.high,
            self.low,
            self.volume,
            self.turnover,
        )


@dataclass
class RetryState:
    """Per-job retry bookkeeping, discarded after the fetch phase"""
    attempt: int = 1
    last_error: Optional[BaseException] = None


@dataclass
class InsertResult:
    """Outcome of writing one batch of records"""
    inserted: int = 0
    duplicates: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.duplicates + self.failed


class JobStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class JobResult:
    """Per-job outcome reported by a worker"""
    job: Job
    worker_id: int
    status: JobStatus
    attempts: int = 0
    fetched: int = 0
    records: int = 0
    insert_result: InsertResult = field(default_factory=InsertResult)
    elapsed: float = 0.0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status == JobStatus.SUCCESS
