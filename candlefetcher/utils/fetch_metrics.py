"""
Metrics tracking for a fetch run.

FetchCounters holds the three run-wide counters every worker updates.
FetchMetricsTracker keeps the richer breakdown used for the final report.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from candlefetcher.exceptions import PersistenceError, RetryExhaustedError, TableCreationError
from candlefetcher.models.data_models import InsertResult, Job


@dataclass(frozen=True)
class CounterSnapshot:
    """Point-in-time copy of the run counters"""
    completed: int
    succeeded: int
    failed: int


class FetchCounters:
    """
    Run-wide job counters

    Workers are coroutines on one event loop and every method here runs
    without yielding, so each increment is atomic with respect to the other
    workers. Nothing resets the counters once a run has started.
    """

    def __init__(self):
        self._completed = 0
        self._succeeded = 0
        self._failed = 0

    def increment_completed(self) -> int:
        """Claim the next progress ordinal"""
        self._completed += 1
        return self._completed

    def increment_succeeded(self) -> int:
        self._succeeded += 1
        return self._succeeded

    def increment_failed(self) -> int:
        self._failed += 1
        return self._failed

    def snapshot(self) -> CounterSnapshot:
        return CounterSnapshot(
            completed=self._completed,
            succeeded=self._succeeded,
            failed=self._failed
        )


class FailureReason(Enum):
    """Why a job ended up in the failed column"""
    FETCH_EXHAUSTED = "fetch_exhausted"
    TABLE_UNAVAILABLE = "table_unavailable"
    DATABASE_ERROR = "database_error"
    UNKNOWN_ERROR = "unknown_error"

    @property
    def label(self) -> str:
        return self.value.replace('_', ' ').title()


@dataclass
class FailedJobInfo:
    symbol: str
    date: date
    worker_id: int
    failure_reason: FailureReason
    error_message: str
    attempts: int = 0
    recorded_at: datetime = field(default_factory=datetime.now)


@dataclass
class FetchMetrics:
    """Per-run totals behind the detailed report"""
    total_jobs: int = 0
    successful_jobs: int = 0
    failed_jobs: int = 0

    candles_fetched: int = 0
    candles_dropped: int = 0
    rows_inserted: int = 0
    duplicates_skipped: int = 0
    row_failures: int = 0
    tables_ensured: int = 0

    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    failures: List[FailedJobInfo] = field(default_factory=list)
    failures_by_reason: Counter = field(default_factory=Counter)
    # symbol -> Counter(success=..., failed=...)
    per_symbol: Dict[str, Counter] = field(default_factory=lambda: defaultdict(Counter))

    @property
    def success_rate(self) -> float:
        return self.successful_jobs / self.total_jobs * 100 if self.total_jobs else 0.0

    @property
    def duration(self) -> timedelta:
        return (self.finished_at or datetime.now()) - self.started_at

    def duration_str(self) -> str:
        """HH:MM:SS"""
        total = int(self.duration.total_seconds())
        return f"{total // 3600:02d}:{total % 3600 // 60:02d}:{total % 60:02d}"


class FetchMetricsTracker:
    """Collects FetchMetrics while the pool runs and renders the final report"""

    FAILED_JOB_LIMIT = 50

    def __init__(self):
        self.metrics = FetchMetrics()

    def start_tracking(self, total_jobs: int):
        self.metrics.started_at = datetime.now()
        self.metrics.total_jobs = total_jobs
        logger.info(f"📊 Tracking {total_jobs} jobs")

    def record_table_ensured(self):
        self.metrics.tables_ensured += 1

    def record_job_success(self, job: Job, fetched: int, records: int, insert_result: InsertResult):
        m = self.metrics
        m.successful_jobs += 1
        m.candles_fetched += fetched
        m.candles_dropped += fetched - records
        m.rows_inserted += insert_result.inserted
        m.duplicates_skipped += insert_result.duplicates
        m.row_failures += insert_result.failed
        m.per_symbol[job.symbol]['success'] += 1

    def record_job_failure(
        self,
        job: Job,
        worker_id: int,
        failure_reason: FailureReason,
        error_message: str,
        attempts: int = 0
    ):
        m = self.metrics
        m.failed_jobs += 1
        m.failures.append(FailedJobInfo(
            symbol=job.symbol,
            date=job.date,
            worker_id=worker_id,
            failure_reason=failure_reason,
            error_message=error_message,
            attempts=attempts
        ))
        m.failures_by_reason[failure_reason] += 1
        m.per_symbol[job.symbol]['failed'] += 1
        logger.warning(f"Recorded failure for {job}: {failure_reason.value} ({error_message})")

    def finish_tracking(self):
        self.metrics.finished_at = datetime.now()
        logger.info(f"📊 Run took {self.metrics.duration_str()}")

    def top_failure_reasons(self, limit: int = 5) -> List[Tuple[str, int]]:
        return [(reason.value, count) for reason, count in self.metrics.failures_by_reason.most_common(limit)]

    def get_summary_stats(self) -> Dict[str, Any]:
        m = self.metrics
        return {
            "total_jobs": m.total_jobs,
            "successful_jobs": m.successful_jobs,
            "failed_jobs": m.failed_jobs,
            "success_rate": round(m.success_rate, 2),
            "total_candles": m.candles_fetched,
            "filtered_candles": m.candles_dropped,
            "records_inserted": m.rows_inserted,
            "duplicates_skipped": m.duplicates_skipped,
            "record_failures": m.row_failures,
            "tables_ensured": m.tables_ensured,
            "duration": m.duration_str(),
            "top_failure_reasons": self.top_failure_reasons(),
        }

    @staticmethod
    def _section(title: str, lines: List[str], rule: int = 40) -> List[str]:
        return [title, "-" * rule, *lines, ""]

    def generate_detailed_report(self) -> str:
        """Plain-text report logged at the end of a run"""
        m = self.metrics
        out = [
            "=" * 80,
            "📊 CANDLESTICK FETCH REPORT",
            "=" * 80,
            f"Generated: {datetime.now():%Y-%m-%d %H:%M:%S}",
            f"Duration: {m.duration_str()}",
            "",
        ]

        out += self._section("📈 JOBS", [
            f"Total Jobs: {m.total_jobs}",
            f"Successful: {m.successful_jobs}",
            f"Failed: {m.failed_jobs}",
            f"Success Rate: {m.success_rate:.2f}%",
        ])

        out += self._section("💾 DATA", [
            f"Candles Fetched: {m.candles_fetched:,}",
            f"Incomplete Candles Dropped: {m.candles_dropped:,}",
            f"Records Inserted: {m.rows_inserted:,}",
            f"Duplicates Skipped: {m.duplicates_skipped:,}",
            f"Record Insert Failures: {m.row_failures:,}",
            f"Tables Ensured: {m.tables_ensured}",
        ])

        if m.failed_jobs:
            out += self._section("❌ FAILURES BY REASON", [
                f"{reason.label}: {count} ({count / m.failed_jobs * 100:.1f}%)"
                for reason, count in m.failures_by_reason.most_common()
            ])

        if m.per_symbol:
            symbol_lines = []
            for symbol, counts in m.per_symbol.items():
                done = counts['success'] + counts['failed']
                symbol_lines.append(
                    f"{symbol}: {counts['success']}/{done} ({counts['success'] / done * 100:.1f}% success)"
                )
            out += self._section("🏷️ SYMBOLS", symbol_lines)

        if m.failures:
            rows = [
                f"{'Symbol':<15} {'Date':<12} {'Worker':<7} {'Attempts':<9} {'Reason':<18} Error",
                "-" * 100,
            ]
            for failed in m.failures[:self.FAILED_JOB_LIMIT]:
                error = failed.error_message
                if len(error) > 40:
                    error = error[:40] + "..."
                rows.append(
                    f"{failed.symbol:<15} {failed.date.isoformat():<12} {failed.worker_id:<7} "
                    f"{failed.attempts:<9} {failed.failure_reason.value:<18} {error}"
                )
            hidden = len(m.failures) - self.FAILED_JOB_LIMIT
            if hidden > 0:
                rows.append(f"... and {hidden} more failed jobs")
            out += self._section(f"🚫 FAILED JOBS (first {self.FAILED_JOB_LIMIT})", rows, rule=100)

        out.append("=" * 80)
        return "\n".join(out)


def classify_error(error: BaseException) -> FailureReason:
    """Map a job's terminal exception to a failure reason"""
    if isinstance(error, RetryExhaustedError):
        return FailureReason.FETCH_EXHAUSTED
    if isinstance(error, TableCreationError):
        return FailureReason.TABLE_UNAVAILABLE
    if isinstance(error, PersistenceError):
        return FailureReason.DATABASE_ERROR
    return FailureReason.UNKNOWN_ERROR
