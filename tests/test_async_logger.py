"""Tests for the structured event logger."""

import json
import sys

import pytest
from loguru import logger

from candlefetcher.utils.async_logger import get_async_logger, setup_async_logger, structured_log_path


@pytest.fixture
def run_logger(tmp_path):
    async_logger = setup_async_logger(str(tmp_path / "logs" / "fetch.log"), level="DEBUG")
    yield async_logger
    logger.remove()
    logger.add(sys.stderr)


def read_events(path):
    with open(path, encoding="utf-8") as f:
        return [json.loads(line)["record"]["extra"] for line in f if line.strip()]


class TestAsyncLogger:
    """Sinks and structured events."""

    def test_structured_path(self):
        assert structured_log_path("logs/candle_fetcher.log") == "logs/candle_fetcher_structured.jsonl"

    @pytest.mark.asyncio
    async def test_events_reach_json_sink(self, run_logger, tmp_path):
        assert get_async_logger() is run_logger

        await run_logger.log_job_progress(1, 4, worker_id=2, symbol="AAPL.US", job_date="2025-10-15")
        await run_logger.log_job_result("AAPL.US", "2025-10-15", 2, attempts=1, records_count=2, processing_time=0.25)
        await run_logger.log_error_with_context(
            RuntimeError("boom"), {"symbol": "AAPL.US", "attempt": 3}, operation="process_job"
        )
        await run_logger.log_run_summary({"succeeded": 1, "failed": 0, "total": 1})
        await run_logger.flush_logs()

        events = read_events(run_logger.structured_file)
        by_type = {event["event_type"]: event for event in events}

        assert by_type["job_progress"]["percentage"] == 25.0
        assert by_type["job_processed"]["processing_time_ms"] == 250
        assert by_type["error"]["context"] == {"symbol": "AAPL.US", "attempt": 3}
        assert by_type["run_summary"]["total"] == 1
        assert (tmp_path / "logs" / "fetch.log").exists()

    @pytest.mark.asyncio
    async def test_plain_records_stay_out_of_json_sink(self, run_logger):
        logger.info("plain message without event fields")
        await run_logger.log_run_summary({"succeeded": 0, "failed": 0, "total": 0})
        await run_logger.flush_logs()

        events = read_events(run_logger.structured_file)

        assert [event["event_type"] for event in events] == ["run_summary"]
