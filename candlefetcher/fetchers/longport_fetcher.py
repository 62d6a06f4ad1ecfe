"""
Historical candlestick fetcher

Runs one job's remote query through the shared rate limiter and the bounded
retry policy. Any object with a ``fetch_historical_range`` coroutine can
serve as the quote service (see services.longport_quote_service).
"""

import asyncio
from typing import Any, Dict, List, Optional

from loguru import logger

from candlefetcher.config.fetcher_settings import AdjustMode, FetcherSettings, Period
from candlefetcher.exceptions import QuoteServiceError
from candlefetcher.models.data_models import Job, RawCandle, RetryState
from candlefetcher.utils.rate_limiter import RateLimiter
from candlefetcher.utils.retry_handler import RetryHandler


class LongportCandleFetcher:
    """Fetches one calendar day of candlesticks per job"""

    def __init__(
        self,
        quote_service,
        rate_limiter: RateLimiter,
        retry_handler: RetryHandler,
        period: Period = Period.ONE_MINUTE,
        adjust: AdjustMode = AdjustMode.NO,
        timeout: Optional[float] = None
    ):
        self.quote_service = quote_service
        self.rate_limiter = rate_limiter
        self.retry_handler = retry_handler
        self.period = period
        self.adjust = adjust
        self.timeout = timeout

        # Every attempt must pass the shared gate
        if self.retry_handler.rate_limiter is None:
            self.retry_handler.rate_limiter = rate_limiter

        # Statistics
        self.stats = {
            'total_jobs': 0,
            'successful_jobs': 0,
            'failed_jobs': 0,
            'total_requests': 0,
            'failed_requests': 0,
            'total_candles_fetched': 0,
        }

    @classmethod
    def from_settings(cls, settings: FetcherSettings, quote_service) -> "LongportCandleFetcher":
        """Build the limiter and retry policy from settings"""
        rate_limiter = RateLimiter(settings.requests_per_second)
        retry_handler = RetryHandler(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_ms / 1000.0,
            max_delay=settings.retry_max_delay_ms / 1000.0,
            rate_limiter=rate_limiter
        )
        return cls(
            quote_service,
            rate_limiter,
            retry_handler,
            period=settings.get_period(),
            adjust=settings.get_adjust_mode(),
            timeout=settings.timeout_ms / 1000.0
        )

    async def fetch_job(
        self,
        job: Job,
        worker_id: int = 0,
        state: Optional[RetryState] = None
    ) -> List[RawCandle]:
        """
        Fetch the raw candles for a job's full UTC day

        Args:
            job: Symbol and date to fetch
            worker_id: Worker running the job, for logging
            state: Receives the attempt count and last error

        Returns:
            Raw candles, possibly empty

        Raises:
            RetryExhaustedError: every attempt failed
        """
        if state is None:
            state = RetryState()
        start, end = job.day_bounds()
        self.stats['total_jobs'] += 1

        def on_retry(retry_state: RetryState, delay: float):
            logger.warning(
                f"Worker {worker_id} retry {retry_state.attempt}/{self.retry_handler.max_attempts} "
                f"for {job} (error: {retry_state.last_error}, waiting {int(delay * 1000)}ms)"
            )

        try:
            candles = await self.retry_handler.execute(
                self._fetch_once, job.symbol, start, end,
                state=state,
                on_retry=on_retry
            )
        except Exception:
            self.stats['failed_jobs'] += 1
            raise

        self.stats['successful_jobs'] += 1
        self.stats['total_candles_fetched'] += len(candles)
        return candles

    async def _fetch_once(self, symbol: str, start, end) -> List[RawCandle]:
        """Single remote call with the configured timeout"""
        self.stats['total_requests'] += 1
        try:
            call = self.quote_service.fetch_historical_range(symbol, self.period, self.adjust, start, end)
            if self.timeout:
                return list(await asyncio.wait_for(call, timeout=self.timeout))
            return list(await call)
        except asyncio.TimeoutError as e:
            self.stats['failed_requests'] += 1
            raise QuoteServiceError(f"Quote request for {symbol} timed out after {self.timeout:.1f}s") from e
        except Exception:
            self.stats['failed_requests'] += 1
            raise

    def get_statistics(self) -> Dict[str, Any]:
        """Get fetcher statistics"""
        stats = self.stats.copy()
        if stats['total_requests'] > 0:
            stats['request_success_rate'] = round(
                (stats['total_requests'] - stats['failed_requests']) / stats['total_requests'] * 100, 2
            )
        stats['rate_limiter'] = self.rate_limiter.get_stats().__dict__.copy()
        stats['retry'] = self.retry_handler.get_stats().__dict__.copy()
        return stats
