"""Tests for run counters and the metrics report."""

from datetime import date

from candlefetcher.exceptions import PersistenceError, RetryExhaustedError, TableCreationError
from candlefetcher.models.data_models import InsertResult, Job
from candlefetcher.utils.fetch_metrics import FailureReason, FetchCounters, FetchMetricsTracker, classify_error

JOB = Job("AAPL.US", date(2025, 10, 15))


class TestFetchCounters:
    """Counter increments and snapshots."""

    def test_increments_and_snapshot(self):
        counters = FetchCounters()

        assert counters.increment_completed() == 1
        assert counters.increment_completed() == 2
        counters.increment_succeeded()
        counters.increment_failed()

        snapshot = counters.snapshot()
        assert (snapshot.completed, snapshot.succeeded, snapshot.failed) == (2, 1, 1)

    def test_snapshot_is_a_copy(self):
        counters = FetchCounters()
        snapshot = counters.snapshot()

        counters.increment_completed()

        assert snapshot.completed == 0


class TestClassifyError:
    """Failure reason mapping."""

    def test_known_errors(self):
        assert classify_error(RetryExhaustedError("x", attempts=3)) is FailureReason.FETCH_EXHAUSTED
        assert classify_error(TableCreationError("x", "AAPL.US", "aapl_us")) is FailureReason.TABLE_UNAVAILABLE
        assert classify_error(PersistenceError("x")) is FailureReason.DATABASE_ERROR
        assert classify_error(RuntimeError("x")) is FailureReason.UNKNOWN_ERROR


class TestFetchMetricsTracker:
    """Aggregation and report rendering."""

    def test_summary_and_report(self):
        tracker = FetchMetricsTracker()
        tracker.start_tracking(2)
        tracker.record_table_ensured()
        tracker.record_job_success(JOB, fetched=3, records=2, insert_result=InsertResult(inserted=1, duplicates=1))
        tracker.record_job_failure(
            Job("0700.HK", date(2025, 10, 15)), worker_id=2,
            failure_reason=FailureReason.FETCH_EXHAUSTED, error_message="down", attempts=3
        )
        tracker.finish_tracking()

        stats = tracker.get_summary_stats()
        assert stats["successful_jobs"] == 1
        assert stats["failed_jobs"] == 1
        assert stats["success_rate"] == 50.0
        assert stats["filtered_candles"] == 1
        assert stats["duplicates_skipped"] == 1
        assert stats["top_failure_reasons"] == [("fetch_exhausted", 1)]

        report = tracker.generate_detailed_report()
        assert "Total Jobs: 2" in report
        assert "0700.HK" in report
        assert "Fetch Exhausted: 1" in report
