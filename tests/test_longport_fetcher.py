"""Tests for the fetch-retry executor and the LongPort mapping."""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from candlefetcher.config.fetcher_settings import AdjustMode, FetcherSettings, Period
from candlefetcher.exceptions import QuoteServiceError, RetryExhaustedError
from candlefetcher.fetchers.longport_fetcher import LongportCandleFetcher
from candlefetcher.models.data_models import Job, RetryState
from candlefetcher.services.longport_quote_service import ADJUST_NAMES, PERIOD_NAMES, to_raw_candle
from candlefetcher.utils.rate_limiter import RateLimiter
from candlefetcher.utils.retry_handler import RetryHandler
from tests.conftest import ScriptedQuoteService, epoch, raw_candle

JOB = Job("AAPL.US", date(2025, 10, 15))


def make_fetcher(quote_service, base_delay=0.01, max_attempts=3, rps=1000, timeout=None):
    limiter = RateLimiter(rps)
    handler = RetryHandler(max_attempts=max_attempts, base_delay=base_delay, max_delay=base_delay * 4)
    return LongportCandleFetcher(quote_service, limiter, handler, timeout=timeout)


class SlowQuoteService:
    async def fetch_historical_range(self, symbol, period, adjust, start, end):
        await asyncio.sleep(1)
        return []


class TestLongportCandleFetcher:
    """Remote call wrapping."""

    @pytest.mark.asyncio
    async def test_requests_full_utc_day(self):
        quote = ScriptedQuoteService(default=[raw_candle(epoch(2025, 10, 15, 14))])
        fetcher = make_fetcher(quote)

        raw = await fetcher.fetch_job(JOB)

        assert len(raw) == 1
        [(symbol, start, end)] = quote.calls
        assert symbol == "AAPL.US"
        assert start == datetime(2025, 10, 15, 0, 0, 0, tzinfo=timezone.utc)
        assert end == datetime(2025, 10, 15, 23, 59, 59, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_empty_result_is_success(self):
        fetcher = make_fetcher(ScriptedQuoteService(default=[]))
        state = RetryState()

        assert await fetcher.fetch_job(JOB, state=state) == []
        assert state.attempt == 1
        assert fetcher.get_statistics()["successful_jobs"] == 1

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        quote = ScriptedQuoteService({"AAPL.US": [QuoteServiceError("down"), [raw_candle(epoch(2025, 10, 15))]]})
        fetcher = make_fetcher(quote)
        state = RetryState()

        raw = await fetcher.fetch_job(JOB, worker_id=2, state=state)

        assert len(raw) == 1
        assert state.attempt == 2
        assert len(quote.calls) == 2
        stats = fetcher.get_statistics()
        assert stats["failed_requests"] == 1
        assert stats["rate_limiter"]["total_admissions"] == 2

    @pytest.mark.asyncio
    async def test_exhaustion(self):
        quote = ScriptedQuoteService({"AAPL.US": [QuoteServiceError("down")]})
        fetcher = make_fetcher(quote)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await fetcher.fetch_job(JOB)

        assert exc_info.value.attempts == 3
        assert len(quote.calls) == 3
        assert fetcher.get_statistics()["failed_jobs"] == 1

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(self):
        fetcher = make_fetcher(SlowQuoteService(), max_attempts=2, timeout=0.05)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await fetcher.fetch_job(JOB)

        assert isinstance(exc_info.value.last_error, QuoteServiceError)
        assert "timed out" in str(exc_info.value.last_error)

    def test_from_settings(self):
        settings = FetcherSettings(
            _env_file=None,
            requests_per_second=4,
            retry_max_attempts=5,
            retry_base_delay_ms=100,
            retry_max_delay_ms=400,
            timeout_ms=1500,
            period="ThirtyMinute",
            adjust_type="ForwardAdjust",
        )

        fetcher = LongportCandleFetcher.from_settings(settings, ScriptedQuoteService())

        assert fetcher.rate_limiter.interval == 0.25
        assert fetcher.retry_handler.rate_limiter is fetcher.rate_limiter
        assert fetcher.retry_handler.backoff_schedule() == [0.1, 0.2, 0.4, 0.4]
        assert fetcher.timeout == 1.5
        assert fetcher.period is Period.THIRTY_MINUTE
        assert fetcher.adjust is AdjustMode.FORWARD_ADJUST


class TestLongportMapping:
    """SDK candlestick to RawCandle."""

    def test_to_raw_candle_from_datetime(self):
        ts = datetime(2025, 10, 15, 14, 30, tzinfo=timezone.utc)
        sdk_candle = SimpleNamespace(
            timestamp=ts,
            open=Decimal("1.1"),
            close=Decimal("1.2"),
            high=Decimal("1.3"),
            low=Decimal("1.0"),
            volume=42,
            turnover=Decimal("50.4"),
        )

        raw = to_raw_candle(sdk_candle)

        assert raw.timestamp == int(ts.timestamp())
        assert raw.high == Decimal("1.3")
        assert raw.volume == 42

    def test_to_raw_candle_keeps_missing_prices(self):
        sdk_candle = SimpleNamespace(timestamp=1760538600, open=None, close=Decimal("1"), volume=1)

        raw = to_raw_candle(sdk_candle)

        assert raw.open is None
        assert raw.high is None
        assert raw.turnover is None

    def test_every_period_and_adjust_mode_mapped(self):
        assert set(PERIOD_NAMES) == set(Period)
        assert set(ADJUST_NAMES) == set(AdjustMode)
        assert PERIOD_NAMES[Period.ONE_MINUTE] == "Min_1"
        assert ADJUST_NAMES[AdjustMode.NO] == "NoAdjust"
