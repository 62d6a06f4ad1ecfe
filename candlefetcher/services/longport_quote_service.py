"""
LongPort Quote Service

Thin async wrapper around the LongPort OpenAPI quote context. The SDK is
blocking, so each call runs in the loop's default executor.
"""

import asyncio
import os
from datetime import date, datetime
from typing import List, Optional

from loguru import logger

from candlefetcher.config.fetcher_settings import AdjustMode, FetcherSettings, Period
from candlefetcher.exceptions import QuoteAuthenticationError, QuoteServiceError
from candlefetcher.models.data_models import RawCandle

PERIOD_NAMES = {
    Period.ONE_MINUTE: "Min_1",
    Period.FIVE_MINUTE: "Min_5",
    Period.FIFTEEN_MINUTE: "Min_15",
    Period.THIRTY_MINUTE: "Min_30",
}

ADJUST_NAMES = {
    AdjustMode.NO: "NoAdjust",
    AdjustMode.FORWARD_ADJUST: "ForwardAdjust",
}


def _epoch_seconds(value) -> int:
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def to_raw_candle(candle) -> RawCandle:
    """Map an SDK candlestick onto RawCandle"""
    return RawCandle(
        timestamp=_epoch_seconds(candle.timestamp),
        volume=int(candle.volume),
        open=getattr(candle, 'open', None),
        close=getattr(candle, 'close', None),
        high=getattr(candle, 'high', None),
        low=getattr(candle, 'low', None),
        turnover=getattr(candle, 'turnover', None),
    )


class LongportQuoteService:
    """Service to query historical candlesticks from LongPort"""

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        access_token: str,
        region: Optional[str] = None
    ):
        self.app_key = app_key
        self.app_secret = app_secret
        self.access_token = access_token
        self.region = region
        self._ctx = None

    @classmethod
    def from_settings(cls, settings: FetcherSettings) -> "LongportQuoteService":
        return cls(
            app_key=settings.longport_app_key,
            app_secret=settings.longport_app_secret,
            access_token=settings.longport_access_token,
            region=settings.longport_region
        )

    def _create_context(self):
        from longport.openapi import Config, QuoteContext

        # The SDK picks its endpoints from this variable
        if self.region:
            os.environ['LONGPORT_REGION'] = self.region

        config = Config(
            app_key=self.app_key,
            app_secret=self.app_secret,
            access_token=self.access_token
        )
        return QuoteContext(config)

    async def initialize(self):
        """Create the quote context, failing fast on bad credentials"""
        if self._ctx is not None:
            return

        loop = asyncio.get_running_loop()
        try:
            self._ctx = await loop.run_in_executor(None, self._create_context)
        except Exception as e:
            raise QuoteAuthenticationError(f"Failed to create LongPort quote context: {e}") from e

        logger.info(f"✅ LongPort quote context ready (region={self.region or 'default'})")

    async def fetch_historical_range(
        self,
        symbol: str,
        period: Period,
        adjust: AdjustMode,
        start: datetime,
        end: datetime
    ) -> List[RawCandle]:
        """
        Fetch candlesticks between two instants

        Args:
            symbol: Symbol such as AAPL.US
            period: Candle granularity
            adjust: Price adjustment mode
            start: Range start (inclusive)
            end: Range end (inclusive)

        Returns:
            Raw candles as reported by the service
        """
        if self._ctx is None:
            await self.initialize()

        from longport.openapi import AdjustType, Period as SdkPeriod

        sdk_period = getattr(SdkPeriod, PERIOD_NAMES[Period(period)])
        sdk_adjust = getattr(AdjustType, ADJUST_NAMES[AdjustMode(adjust)])
        start_date: date = start.date()
        end_date: date = end.date()

        def call_sdk():
            return self._ctx.history_candlesticks_by_date(
                symbol, sdk_period, sdk_adjust, start_date, end_date
            )

        loop = asyncio.get_running_loop()
        try:
            candles = await loop.run_in_executor(None, call_sdk)
        except Exception as e:
            raise QuoteServiceError(
                f"LongPort history request failed for {symbol}: {e}",
                {'symbol': symbol, 'start': start.isoformat(), 'end': end.isoformat()}
            ) from e

        raw = [to_raw_candle(c) for c in candles or []]
        logger.debug(f"LongPort returned {len(raw)} candles for {symbol} {start_date}")
        return raw

    async def cleanup(self):
        """Drop the quote context"""
        self._ctx = None
        logger.info("🧹 LongPort quote service cleaned up")
