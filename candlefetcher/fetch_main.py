"""
Candlestick Fetcher - Main Orchestrator

Loads configuration, connects the store and the quote service, ensures every
symbol table, then drains the symbols x dates task set with the worker pool.
"""

import asyncio
import signal
import sys
import time
from typing import Optional, Set

from dotenv import load_dotenv
from loguru import logger

from candlefetcher.config.fetcher_settings import FetcherSettings
from candlefetcher.config.yaml_loader import load_settings
from candlefetcher.database.postgres_store import PostgresCandleStore
from candlefetcher.exceptions import (
    ConfigurationError,
    QuoteAuthenticationError,
    StoreConnectionError,
    TableCreationError,
)
from candlefetcher.fetchers.longport_fetcher import LongportCandleFetcher
from candlefetcher.fetchers.task_builder import build_jobs
from candlefetcher.scheduler.worker_pool import RunSummary, WorkerPool
from candlefetcher.services.longport_quote_service import LongportQuoteService
from candlefetcher.utils.async_logger import setup_async_logger
from candlefetcher.utils.fetch_metrics import FetchCounters, FetchMetricsTracker

# Errors that abort the run before any job executes
FATAL_ERRORS = (ConfigurationError, StoreConnectionError, QuoteAuthenticationError)


class CandleFetcher:
    """
    Main orchestrator for one fetch run
    """

    def __init__(
        self,
        settings: FetcherSettings,
        quote_service=None,
        store: Optional[PostgresCandleStore] = None,
        async_logger=None
    ):
        self.settings = settings
        self.async_logger = async_logger

        self.quote_service = quote_service or LongportQuoteService.from_settings(settings)
        self.store = store or PostgresCandleStore(settings, async_logger=async_logger)
        self.fetcher = LongportCandleFetcher.from_settings(settings, self.quote_service)

        self.counters = FetchCounters()
        self.metrics_tracker = FetchMetricsTracker()
        self.pool: Optional[WorkerPool] = None
        self.start_time: Optional[float] = None

    async def run(self) -> RunSummary:
        """
        Execute the whole run

        Raises:
            ConfigurationError, StoreConnectionError, QuoteAuthenticationError:
                startup failed and no job was executed
        """
        self.start_time = time.monotonic()
        try:
            dates = self.settings.parse_dates()
            symbols = list(dict.fromkeys(self.settings.symbols))
            jobs = build_jobs(symbols, dates)

            logger.info("Starting candlestick fetch run")
            logger.info(f"  • Symbols: {len(symbols)}")
            logger.info(f"  • Dates: {len(dates)}")
            logger.info(f"  • Total jobs: {len(jobs)}")
            logger.info(
                f"  • Period: {self.fetcher.period.value}, adjust: {self.fetcher.adjust.value}, "
                f"workers: {self.settings.workers}, rps: {self.settings.requests_per_second}"
            )

            await self._initialize_components()
            blocked = await self._ensure_tables(symbols)

            self.pool = WorkerPool(
                jobs,
                workers=self.settings.workers,
                fetcher=self.fetcher,
                store=self.store,
                counters=self.counters,
                metrics=self.metrics_tracker,
                async_logger=self.async_logger,
                blocked_symbols=blocked
            )

            self._install_stop_handler()
            try:
                summary = await self.pool.run()
            finally:
                self._remove_stop_handler()

            await self._finalize_processing(summary)
            return summary

        except FATAL_ERRORS as e:
            await self._handle_fatal_error(e)
            raise

        finally:
            await self._cleanup_components()

    async def _initialize_components(self):
        """Connect the store and the quote service"""
        logger.info("🔗 Initializing components...")
        await self.store.connect()
        if hasattr(self.quote_service, 'initialize'):
            await self.quote_service.initialize()
        logger.info("✅ All components initialized successfully")

    async def _ensure_tables(self, symbols) -> Set[str]:
        """Create every symbol table up front, returning the symbols that failed"""
        blocked: Set[str] = set()
        for symbol in symbols:
            try:
                await self.store.ensure_table(symbol)
                self.metrics_tracker.record_table_ensured()
            except TableCreationError as e:
                blocked.add(symbol)
                logger.error(f"❌ Table creation failed for {symbol}, its jobs will be skipped: {e}")
        return blocked

    def _install_stop_handler(self):
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, self._handle_stop_signal)
        except (NotImplementedError, RuntimeError):
            # Signal handlers are not available on every platform/loop
            logger.debug("SIGINT handler not installed")

    def _handle_stop_signal(self):
        """First Ctrl-C drains gracefully, a second one interrupts immediately"""
        self.pool.request_stop()
        self._remove_stop_handler()
        logger.warning("Press Ctrl-C again to abort without waiting for in-flight jobs")

    def _remove_stop_handler(self):
        try:
            asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    async def _finalize_processing(self, summary: RunSummary):
        """Log the detailed report and the final counters"""
        logger.info("\n" + self.metrics_tracker.generate_detailed_report())

        stats = self.fetcher.get_statistics()
        logger.info(
            f"Quote requests: {stats['total_requests']} "
            f"(failed {stats['failed_requests']}, throttled {stats['rate_limiter']['admissions_throttled']})"
        )

        if summary.stopped:
            logger.warning(f"⏹️ Run stopped early, {summary.not_attempted} jobs not attempted")

        if self.async_logger:
            await self.async_logger.log_run_summary(summary.as_dict())
        else:
            logger.info(f"succeeded={summary.succeeded} failed={summary.failed} total={summary.total}")

        logger.info(f"✅ All data saved to PostgreSQL in {summary.elapsed:.1f}s")

    async def _handle_fatal_error(self, error: Exception):
        logger.error(f"💥 Fatal error: {error}")
        if self.async_logger:
            await self.async_logger.log_error_with_context(
                error=error,
                context={'elapsed_seconds': round(time.monotonic() - self.start_time, 3)},
                operation='startup'
            )
            await self.async_logger.flush_logs()

    async def _cleanup_components(self):
        """Cleanup all components and resources"""
        try:
            if hasattr(self.quote_service, 'cleanup'):
                await self.quote_service.cleanup()
            await self.store.close()
        except Exception as e:
            logger.error(f"Error during cleanup: {e}")


async def run_fetch(config_dir: Optional[str] = None) -> int:
    """Run once and return the process exit code"""
    load_dotenv(override=False)

    try:
        settings = load_settings(config_dir)
    except ConfigurationError as e:
        logger.error(f"💥 Failed to load configuration: {e}")
        return 1

    async_logger = setup_async_logger(
        log_file=settings.log_file_path,
        level=settings.log_level,
        rotation=settings.log_rotation,
        retention=settings.log_retention
    )
    logger.debug(f"Effective settings: {settings.redacted()}")

    try:
        await CandleFetcher(settings, async_logger=async_logger).run()
    except FATAL_ERRORS:
        return 1
    finally:
        await async_logger.flush_logs()

    return 0


def main():
    """Console entry point"""
    try:
        exit_code = asyncio.run(run_fetch())
    except KeyboardInterrupt:
        logger.info("⏹️ Process interrupted by user")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
