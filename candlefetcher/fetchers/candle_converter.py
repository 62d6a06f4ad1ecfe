"""
Raw candle to CandlestickRecord conversion
"""

from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from loguru import logger

from candlefetcher.models.data_models import CandlestickRecord, RawCandle


def is_complete(raw: RawCandle) -> bool:
    """All four prices present"""
    return None not in (raw.open, raw.close, raw.high, raw.low)


def convert_candle(symbol: str, raw: RawCandle) -> Optional[CandlestickRecord]:
    """Convert one raw point, None when a price is missing"""
    if not is_complete(raw):
        return None

    return CandlestickRecord(
        symbol=symbol,
        timestamp=datetime.fromtimestamp(raw.timestamp, tz=timezone.utc),
        open=float(raw.open),
        close=float(raw.close),
        high=float(raw.high),
        low=float(raw.low),
        volume=int(raw.volume),
        turnover=float(raw.turnover) if raw.turnover is not None else 0.0,
    )


def to_records(symbol: str, job_date: date, raw_candles: Iterable[RawCandle]) -> List[CandlestickRecord]:
    """
    Convert a job's raw points, dropping incomplete ones

    Input order is kept. Duplicate timestamps are passed through and left
    for the insert statement to resolve.
    """
    records = []
    dropped = 0
    for raw in raw_candles:
        record = convert_candle(symbol, raw)
        if record is None:
            dropped += 1
            continue
        records.append(record)

    if dropped:
        logger.debug(f"Dropped {dropped} incomplete candles for {symbol} on {job_date}")
    return records
