"""
Loguru setup for fetch runs

Three sinks: coloured console, rotating text file and a JSON-lines file that
receives the structured job/database/summary events emitted below.
"""

import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"
CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
)


def structured_log_path(log_file: str) -> str:
    """logs/candle_fetcher.log -> logs/candle_fetcher_structured.jsonl"""
    return str(Path(log_file).with_suffix('')) + '_structured.jsonl'


class AsyncLogger:
    """Configures the sinks and emits structured run events"""

    def __init__(
        self,
        log_file: str,
        level: str = "INFO",
        rotation: str = "100 MB",
        retention: str = "30 days",
        enable_console: bool = True
    ):
        self.log_file = log_file
        self.structured_file = structured_log_path(log_file)
        self.level = level

        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

        # Drop loguru's default stderr sink before adding ours
        logger.remove()
        logger.add(
            log_file,
            level=level,
            format=FILE_FORMAT,
            rotation=rotation,
            retention=retention,
            backtrace=True,
            diagnose=False,
            enqueue=True,
            catch=True
        )
        if enable_console:
            logger.add(sys.stdout, level=level, format=CONSOLE_FORMAT, colorize=True)
        logger.add(
            self.structured_file,
            level="INFO",
            rotation=rotation,
            retention=retention,
            serialize=True,
            enqueue=True,
            filter=lambda record: "event_type" in record["extra"]
        )

        logger.info(f"Logging to {log_file} (level {level}), events to {self.structured_file}")

    def _emit(self, event_type: str, level: str, message: str, **fields: Any):
        """Log message with the event fields bound for the JSON sink"""
        logger.bind(
            event_type=event_type,
            timestamp=datetime.now().isoformat(),
            **fields
        ).log(level, message)

    async def log_job_progress(
        self,
        completed: int,
        total: int,
        worker_id: int,
        symbol: str,
        job_date: str
    ):
        """A worker picked up its next job"""
        self._emit(
            'job_progress', 'INFO',
            f"[progress={completed}/{total}] worker={worker_id} querying {symbol} for {job_date}",
            completed=completed,
            total=total,
            percentage=round(completed / total * 100, 1) if total else 0.0,
            worker_id=worker_id,
            symbol=symbol,
            date=job_date
        )

    async def log_job_result(
        self,
        symbol: str,
        job_date: str,
        worker_id: int,
        attempts: int,
        records_count: int,
        processing_time: float,
        status: str = "success"
    ):
        """Outcome of one job"""
        elapsed_ms = int(processing_time * 1000)
        if status == "success":
            level = 'INFO'
            message = f"✅ worker={worker_id} {symbol} {job_date}: {records_count:,} records in {elapsed_ms}ms"
        else:
            level = 'ERROR'
            message = (
                f"❌ worker={worker_id} {symbol} {job_date}: {status} after {attempts} attempt(s) "
                f"in {elapsed_ms}ms"
            )

        self._emit(
            'job_processed', level, message,
            symbol=symbol,
            date=job_date,
            worker_id=worker_id,
            attempts=attempts,
            records_count=records_count,
            processing_time_ms=elapsed_ms,
            status=status
        )

    async def log_database_operation(
        self,
        operation: str,
        table_name: str,
        records_count: int,
        execution_time: float,
        status: str = "success"
    ):
        self._emit(
            'database_operation', 'DEBUG' if operation == 'insert' else 'INFO',
            f"DB {operation} {table_name}: {records_count:,} rows in {execution_time:.2f}s ({status})",
            operation=operation,
            table_name=table_name,
            records_count=records_count,
            execution_time_seconds=round(execution_time, 3),
            status=status
        )

    async def log_error_with_context(
        self,
        error: BaseException,
        context: Dict[str, Any],
        operation: str = "unknown"
    ):
        """Error plus whatever identifies the failing job or resource"""
        self._emit(
            'error', 'ERROR',
            f"{operation} failed: {type(error).__name__}: {error} {context}",
            operation=operation,
            error_type=type(error).__name__,
            error_message=str(error),
            context=context
        )

    async def log_run_summary(self, summary: Dict[str, Any]):
        """Final counters of a run"""
        self._emit(
            'run_summary', 'INFO',
            f"succeeded={summary.get('succeeded', 0)} failed={summary.get('failed', 0)} "
            f"total={summary.get('total', 0)}",
            **summary
        )

    async def flush_logs(self):
        """Wait for enqueued records to reach their sinks"""
        await logger.complete()


_run_logger: Optional[AsyncLogger] = None


def setup_async_logger(
    log_file: str,
    level: str = "INFO",
    rotation: str = "100 MB",
    retention: str = "30 days"
) -> AsyncLogger:
    """Configure logging for this process and return the event logger"""
    global _run_logger
    _run_logger = AsyncLogger(log_file, level=level, rotation=rotation, retention=retention)
    return _run_logger


def get_async_logger() -> Optional[AsyncLogger]:
    """Logger configured by setup_async_logger, if any"""
    return _run_logger
