"""
Per-symbol table management

One table per symbol, named from the lowercased base ticker and region
(AAPL.US -> aapl_us). Creation is idempotent in the store and also cached
here so concurrent jobs for one symbol issue a single DDL statement.
"""

import asyncio
from typing import Dict, Set

from loguru import logger

from candlefetcher.exceptions import TableCreationError


class TableNamingStrategy:
    """Handles table naming conventions for symbols"""

    @staticmethod
    def safe_table_name(symbol: str) -> str:
        """
        Derive the table name for a symbol

        Raises:
            ValueError: symbol is not of the form BASE.REGION
        """
        base, sep, region = symbol.strip().partition('.')
        if not sep or not base or not region:
            raise ValueError(f"Symbol '{symbol}' is not of the form BASE.REGION")
        return f"{base.lower()}_{region.lower()}"

    @staticmethod
    def quote_identifier(name: str) -> str:
        """Quote for SQL; names such as 0700_hk are not valid bare identifiers"""
        return '"' + name.replace('"', '""') + '"'


def safe_table_name(symbol: str) -> str:
    return TableNamingStrategy.safe_table_name(symbol)


class CandleTableSchemas:
    """SQL text for candlestick tables"""

    @staticmethod
    def get_create_statement(table_name: str) -> str:
        return f"""
        CREATE TABLE IF NOT EXISTS {TableNamingStrategy.quote_identifier(table_name)} (
            timestamp   TIMESTAMPTZ PRIMARY KEY,
            open        DOUBLE PRECISION,
            close       DOUBLE PRECISION,
            high        DOUBLE PRECISION,
            low         DOUBLE PRECISION,
            volume      BIGINT,
            turnover    DOUBLE PRECISION
        )
        """

    @staticmethod
    def get_insert_statement(table_name: str) -> str:
        return (
            f"INSERT INTO {TableNamingStrategy.quote_identifier(table_name)} "
            f"(timestamp, open, close, high, low, volume, turnover) "
            f"VALUES ($1, $2, $3, $4, $5, $6, $7) "
            f"ON CONFLICT (timestamp) DO NOTHING"
        )

    @staticmethod
    def get_count_statement(table_name: str) -> str:
        return f"SELECT COUNT(*) FROM {TableNamingStrategy.quote_identifier(table_name)}"


class CandleTableManager:
    """Ensures symbol tables exist, once per table per process"""

    def __init__(self, pool):
        self.pool = pool
        self.table_cache: Set[str] = set()
        self._table_locks: Dict[str, asyncio.Lock] = {}

    async def ensure_table(self, symbol: str) -> str:
        """
        Create the symbol's table if absent

        Returns:
            The table name

        Raises:
            TableCreationError: the name is invalid or the DDL failed
        """
        try:
            table_name = safe_table_name(symbol)
        except ValueError as e:
            raise TableCreationError(str(e), symbol=symbol, table_name="") from e

        if table_name in self.table_cache:
            return table_name

        lock = self._table_locks.setdefault(table_name, asyncio.Lock())
        async with lock:
            # Double-check after acquiring the lock
            if table_name not in self.table_cache:
                await self._create_table(symbol, table_name)
                self.table_cache.add(table_name)

        return table_name

    async def _create_table(self, symbol: str, table_name: str):
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(CandleTableSchemas.get_create_statement(table_name))
        except Exception as e:
            logger.error(f"Failed to create table {table_name} for {symbol}: {e}")
            raise TableCreationError(
                f"Failed to create table {table_name}: {e}",
                symbol=symbol,
                table_name=table_name
            ) from e

        logger.info(f"Ensured table {table_name} for {symbol}")
