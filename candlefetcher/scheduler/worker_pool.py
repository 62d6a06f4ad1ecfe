"""
Worker pool draining the job queue

A fixed number of worker coroutines share one pre-filled queue, one rate
limiter (inside the fetcher) and one set of counters. Each job runs
fetch -> convert -> insert and is then counted exactly once.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from loguru import logger

from candlefetcher.exceptions import CandleFetcherError, TableCreationError
from candlefetcher.fetchers.candle_converter import to_records
from candlefetcher.models.data_models import Job, JobResult, JobStatus, RetryState
from candlefetcher.utils.fetch_metrics import FetchCounters, FetchMetricsTracker, classify_error


@dataclass
class RunSummary:
    """Aggregate outcome handed back to the caller after the drain"""
    succeeded: int
    failed: int
    total: int
    not_attempted: int
    elapsed: float
    stopped: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {
            'succeeded': self.succeeded,
            'failed': self.failed,
            'total': self.total,
            'not_attempted': self.not_attempted,
            'elapsed_seconds': round(self.elapsed, 3),
            'stopped': self.stopped,
        }


class WorkerPool:
    """Runs a finite job list with a fixed number of concurrent workers"""

    def __init__(
        self,
        jobs: Iterable[Job],
        workers: int,
        fetcher,
        store,
        counters: Optional[FetchCounters] = None,
        metrics: Optional[FetchMetricsTracker] = None,
        async_logger=None,
        blocked_symbols: Optional[Set[str]] = None,
        converter: Callable = to_records
    ):
        """
        Args:
            jobs: Task set, enqueued in order before any worker starts
            workers: Number of concurrent workers, at least 1
            fetcher: Object with ``fetch_job(job, worker_id, state)``
            store: Object with ``insert_records(symbol, records, context=..., started_at=...)``
            counters: Shared run counters
            metrics: Detailed metrics tracker
            async_logger: Structured logger for progress and results
            blocked_symbols: Symbols whose table could not be ensured
            converter: Raw candle to record conversion
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")

        self.jobs: List[Job] = list(jobs)
        self.workers = workers
        self.fetcher = fetcher
        self.store = store
        self.counters = counters or FetchCounters()
        self.metrics = metrics or FetchMetricsTracker()
        self._async_logger = async_logger
        self.blocked_symbols: Set[str] = set(blocked_symbols or ())
        self._convert = converter

        self._queue: Optional[asyncio.Queue] = None
        self._stop_requested = False

    @property
    def total(self) -> int:
        return len(self.jobs)

    def request_stop(self):
        """Let in-flight jobs finish but start no new ones"""
        if not self._stop_requested:
            logger.warning("Stop requested, workers will exit after their current job")
        self._stop_requested = True

    async def run(self) -> RunSummary:
        """Drain every job and return the aggregate counts"""
        self._queue = asyncio.Queue()
        for job in self.jobs:
            self._queue.put_nowait(job)

        self.metrics.start_tracking(self.total)
        logger.info(f"🚀 Starting {self.workers} workers for {self.total} jobs")
        start_time = time.monotonic()

        await asyncio.gather(*(self._worker(worker_id) for worker_id in range(1, self.workers + 1)))

        elapsed = time.monotonic() - start_time
        self.metrics.finish_tracking()

        snapshot = self.counters.snapshot()
        summary = RunSummary(
            succeeded=snapshot.succeeded,
            failed=snapshot.failed,
            total=self.total,
            not_attempted=self.total - snapshot.completed,
            elapsed=elapsed,
            stopped=self._stop_requested
        )

        # The queue only lives for the duration of a drain
        self._queue = None
        return summary

    async def _worker(self, worker_id: int):
        """Take jobs one at a time until the queue is empty"""
        processed = 0
        while not self._stop_requested:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

            try:
                result = await self._process_job(job, worker_id)
            finally:
                self._queue.task_done()

            await self._record_result(result)
            processed += 1

        logger.debug(f"Worker {worker_id} finished after {processed} jobs")

    async def _process_job(self, job: Job, worker_id: int) -> JobResult:
        """Fetch, convert and persist a single job"""
        start_time = time.monotonic()
        completed = self.counters.increment_completed()
        await self._log_progress(completed, job, worker_id)

        if job.symbol in self.blocked_symbols:
            return JobResult(
                job=job,
                worker_id=worker_id,
                status=JobStatus.SKIPPED,
                elapsed=time.monotonic() - start_time,
                error=TableCreationError(
                    f"Table for {job.symbol} is unavailable",
                    symbol=job.symbol,
                    table_name=""
                )
            )

        state = RetryState()
        fetched = 0
        records = []
        try:
            raw = await self.fetcher.fetch_job(job, worker_id, state)
            fetched = len(raw)
            records = self._convert(job.symbol, job.date, raw)
            insert_result = await self.store.insert_records(
                job.symbol,
                records,
                context={'date': job.date.isoformat(), 'worker_id': worker_id},
                started_at=start_time
            )

        except CandleFetcherError as e:
            return JobResult(
                job=job,
                worker_id=worker_id,
                status=JobStatus.FAILED,
                attempts=state.attempt,
                fetched=fetched,
                records=len(records),
                elapsed=time.monotonic() - start_time,
                error=e
            )

        except Exception as e:
            logger.exception(f"Unexpected error in worker {worker_id} for {job}: {e}")
            return JobResult(
                job=job,
                worker_id=worker_id,
                status=JobStatus.FAILED,
                attempts=state.attempt,
                fetched=fetched,
                records=len(records),
                elapsed=time.monotonic() - start_time,
                error=e
            )

        return JobResult(
            job=job,
            worker_id=worker_id,
            status=JobStatus.SUCCESS,
            attempts=state.attempt,
            fetched=fetched,
            records=len(records),
            insert_result=insert_result,
            elapsed=time.monotonic() - start_time
        )

    async def _log_progress(self, completed: int, job: Job, worker_id: int):
        if self._async_logger:
            await self._async_logger.log_job_progress(
                completed=completed,
                total=self.total,
                worker_id=worker_id,
                symbol=job.symbol,
                job_date=job.date.isoformat()
            )
        else:
            logger.info(f"[progress={completed}/{self.total}] worker={worker_id} querying {job}")

    async def _record_result(self, result: JobResult):
        """Update counters and metrics for a finished job"""
        job = result.job

        if result.ok:
            self.counters.increment_succeeded()
            self.metrics.record_job_success(job, result.fetched, result.records, result.insert_result)
        else:
            self.counters.increment_failed()
            self.metrics.record_job_failure(
                job,
                worker_id=result.worker_id,
                failure_reason=classify_error(result.error),
                error_message=str(result.error),
                attempts=result.attempts
            )
            if self._async_logger:
                await self._async_logger.log_error_with_context(
                    error=result.error,
                    context={
                        'symbol': job.symbol,
                        'date': job.date.isoformat(),
                        'worker_id': result.worker_id,
                        'attempt': result.attempts,
                        'elapsed_ms': int(result.elapsed * 1000),
                    },
                    operation='process_job'
                )

        if self._async_logger:
            await self._async_logger.log_job_result(
                symbol=job.symbol,
                job_date=job.date.isoformat(),
                worker_id=result.worker_id,
                attempts=result.attempts,
                records_count=result.records,
                processing_time=result.elapsed,
                status=result.status.value
            )
        elif result.ok:
            logger.info(
                f"worker={result.worker_id} done {job} "
                f"(records={result.records}, elapsed={result.elapsed * 1000:.0f}ms)"
            )
        else:
            logger.error(
                f"worker={result.worker_id} failed {job} after {result.attempts} attempt(s) "
                f"(elapsed={result.elapsed * 1000:.0f}ms): {result.error}"
            )
