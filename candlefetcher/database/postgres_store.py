"""
PostgreSQL candlestick store

asyncpg connection pool plus the two write operations the pipeline needs:
ensuring a symbol's table and inserting records with conflict skipping.
"""

import time
from typing import Any, Dict, List, Optional

import asyncpg
from loguru import logger

from candlefetcher.config.fetcher_settings import FetcherSettings
from candlefetcher.database.table_manager import CandleTableManager, CandleTableSchemas
from candlefetcher.exceptions import PersistenceError, StoreConnectionError
from candlefetcher.models.data_models import CandlestickRecord, InsertResult

# Errors meaning the connection itself is gone, not just one row
CONNECTION_ERRORS = (
    asyncpg.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    OSError,
)


def _rows_affected(status: str) -> int:
    """Row count from a command tag such as 'INSERT 0 1'"""
    try:
        return int(status.rsplit(' ', 1)[-1])
    except (AttributeError, ValueError):
        return 0


class PostgresCandleStore:
    """Candlestick store backed by an asyncpg pool"""

    def __init__(self, settings: Optional[FetcherSettings] = None, pool=None, async_logger=None):
        self.settings = settings
        self.pool = pool
        self._async_logger = async_logger
        self.table_manager: Optional[CandleTableManager] = (
            CandleTableManager(pool) if pool is not None else None
        )

        # Statistics
        self.stats = {
            'total_inserts': 0,
            'successful_inserts': 0,
            'failed_inserts': 0,
            'total_records_inserted': 0,
            'duplicates_skipped': 0,
            'record_failures': 0,
            'tables_ensured': 0,
            'connection_errors': 0,
        }

    async def connect(self):
        """Create the connection pool and verify it with SELECT 1"""
        if self.pool is not None:
            return

        try:
            self.pool = await asyncpg.create_pool(
                dsn=self.settings.get_database_dsn(),
                min_size=self.settings.db_pool_min_size,
                max_size=self.settings.db_pool_max_size,
                command_timeout=60
            )

            # Test connection
            async with self.pool.acquire() as conn:
                await conn.execute('SELECT 1')

        except Exception as e:
            self.stats['connection_errors'] += 1
            if self._async_logger:
                await self._async_logger.log_error_with_context(
                    error=e,
                    context={'host': self.settings.db_host, 'database': self.settings.db_name},
                    operation='connect'
                )
            if self.pool is not None:
                await self.pool.close()
                self.pool = None
            raise StoreConnectionError(
                f"Failed to connect to PostgreSQL at {self.settings.db_host}:{self.settings.db_port}: {e}"
            ) from e

        self.table_manager = CandleTableManager(self.pool)
        logger.info(f"Connected to PostgreSQL at {self.settings.db_host}:{self.settings.db_port}/{self.settings.db_name}")

        if self._async_logger:
            await self._async_logger.log_database_operation(
                operation='connect',
                table_name=self.settings.db_name,
                records_count=0,
                execution_time=0.0,
                status='success'
            )

    def _require_pool(self):
        if self.pool is None or self.table_manager is None:
            raise StoreConnectionError("Not connected to PostgreSQL")

    async def ensure_table(self, symbol: str) -> str:
        """Idempotently create the table for a symbol, returning its name"""
        self._require_pool()
        already = len(self.table_manager.table_cache)
        table_name = await self.table_manager.ensure_table(symbol)
        if len(self.table_manager.table_cache) > already:
            self.stats['tables_ensured'] += 1
        return table_name

    async def insert_records(
        self,
        symbol: str,
        records: List[CandlestickRecord],
        context: Optional[Dict[str, Any]] = None,
        started_at: Optional[float] = None
    ) -> InsertResult:
        """
        Insert records, skipping timestamps already present

        A row rejected by the server, or whose arguments asyncpg cannot
        encode, is logged and counted as failed without aborting the batch.

        Args:
            context: Job fields such as date and worker_id for per-row logs
            started_at: time.monotonic() at job start, for elapsed times

        Raises:
            PersistenceError: the connection failed mid-batch
        """
        self._require_pool()
        result = InsertResult()
        if not records:
            return result

        table_name = await self.table_manager.ensure_table(symbol)
        query = CandleTableSchemas.get_insert_statement(table_name)
        start_time = time.monotonic()
        job_start = started_at if started_at is not None else start_time
        self.stats['total_inserts'] += 1

        try:
            async with self.pool.acquire() as conn:
                for record in records:
                    try:
                        status = await conn.execute(query, *record.as_row())
                    except ValueError as e:
                        # Client-side DataError: asyncpg could not encode an argument
                        self._log_row_failure(symbol, table_name, record, e, context, job_start)
                        result.failed += 1
                        continue
                    except CONNECTION_ERRORS:
                        raise
                    except asyncpg.PostgresError as e:
                        self._log_row_failure(symbol, table_name, record, e, context, job_start)
                        result.failed += 1
                        continue

                    if _rows_affected(status) > 0:
                        result.inserted += 1
                    else:
                        result.duplicates += 1

        except CONNECTION_ERRORS as e:
            self.stats['failed_inserts'] += 1
            logger.error(f"Connection lost inserting {len(records)} records for {symbol}: {e}")
            raise PersistenceError(
                f"Batch insert into {table_name} failed: {e}",
                {'symbol': symbol, 'table_name': table_name, 'partial': result.total}
            ) from e

        execution_time = time.monotonic() - start_time
        self.stats['successful_inserts'] += 1
        self.stats['total_records_inserted'] += result.inserted
        self.stats['duplicates_skipped'] += result.duplicates
        self.stats['record_failures'] += result.failed

        logger.debug(
            f"Inserted {result.inserted} records for {symbol} "
            f"({result.duplicates} duplicates, {result.failed} failed) in {execution_time:.2f}s"
        )

        if self._async_logger:
            await self._async_logger.log_database_operation(
                operation='insert',
                table_name=table_name,
                records_count=result.inserted,
                execution_time=execution_time,
                status='success' if result.failed == 0 else 'partial'
            )

        return result

    @staticmethod
    def _log_row_failure(
        symbol: str,
        table_name: str,
        record: CandlestickRecord,
        error: BaseException,
        context: Optional[Dict[str, Any]],
        job_start: float
    ):
        fields = dict(context or {})
        fields['elapsed_ms'] = int((time.monotonic() - job_start) * 1000)
        details = ' '.join(f"{key}={value}" for key, value in fields.items())
        logger.bind(table_name=table_name, **fields).warning(
            f"Insert failed for {symbol} at {record.timestamp.isoformat()} "
            f"into {table_name} ({details}): {type(error).__name__}: {error}"
        )

    async def count_rows(self, symbol: str) -> int:
        """Number of rows stored for a symbol"""
        self._require_pool()
        table_name = await self.table_manager.ensure_table(symbol)
        async with self.pool.acquire() as conn:
            return await conn.fetchval(CandleTableSchemas.get_count_statement(table_name))

    def get_statistics(self) -> Dict[str, Any]:
        """Get store statistics"""
        stats = self.stats.copy()
        stats['tables_cached'] = len(self.table_manager.table_cache) if self.table_manager else 0
        return stats

    async def close(self):
        """Close the connection pool"""
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed")

        logger.info(f"PostgreSQL store statistics: {self.get_statistics()}")
