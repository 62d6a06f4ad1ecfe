"""Shared fakes for the candlestick fetcher test suite."""

import re
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal

import asyncpg
import pytest
from asyncpg.exceptions._base import DataError as ArgumentDataError

from candlefetcher.database.postgres_store import PostgresCandleStore
from candlefetcher.models.data_models import RawCandle

TABLE_PATTERN = re.compile(r'(?:INTO|EXISTS|FROM)\s+"([^"]+)"')


def epoch(year, month, day, hour=0, minute=0):
    return int(datetime(year, month, day, hour, minute, tzinfo=timezone.utc).timestamp())


def raw_candle(ts, open_="10.0", close="10.5", high="11.0", low="9.5", volume=100, turnover="1000"):
    """Build a RawCandle; pass None for any price to leave it missing."""
    return RawCandle(
        timestamp=ts,
        volume=volume,
        open=Decimal(open_) if open_ is not None else None,
        close=Decimal(close) if close is not None else None,
        high=Decimal(high) if high is not None else None,
        low=Decimal(low) if low is not None else None,
        turnover=Decimal(turnover) if turnover is not None else None,
    )


class FakeConnection:
    """Just enough of asyncpg.Connection for the store."""

    def __init__(self, pool):
        self.pool = pool

    def _table(self, query):
        match = TABLE_PATTERN.search(query)
        assert match, f"no table in query: {query}"
        return match.group(1)

    async def execute(self, query, *args):
        text = query.strip()
        if text.startswith("SELECT 1"):
            return "SELECT 1"

        if text.startswith("CREATE TABLE"):
            table = self._table(text)
            if table in self.pool.ddl_failures:
                raise asyncpg.exceptions.InsufficientPrivilegeError(f"permission denied for {table}")
            self.pool.ddl_count += 1
            self.pool.tables.setdefault(table, {})
            return "CREATE TABLE"

        if text.startswith("INSERT INTO"):
            if self.pool.connection_lost:
                raise asyncpg.exceptions.ConnectionDoesNotExistError("connection was closed in the middle of operation")
            table = self._table(text)
            timestamp = args[0]
            if timestamp in self.pool.rejected_timestamps:
                raise asyncpg.exceptions.CheckViolationError("new row violates check constraint")
            if timestamp in self.pool.unencodable_timestamps:
                raise ArgumentDataError("invalid input for query argument $6: value out of int64 range")
            rows = self.pool.tables[table]
            # ON CONFLICT (timestamp) DO NOTHING
            if timestamp in rows:
                return "INSERT 0 0"
            rows[timestamp] = args
            return "INSERT 0 1"

        raise AssertionError(f"unexpected query: {query}")

    async def fetchval(self, query, *args):
        return len(self.pool.tables[self._table(query)])


class FakePool:
    """In-memory stand-in for an asyncpg pool."""

    def __init__(self):
        self.tables = {}
        self.ddl_count = 0
        self.ddl_failures = set()
        self.rejected_timestamps = set()
        self.unencodable_timestamps = set()
        self.connection_lost = False
        self.closed = False

    @asynccontextmanager
    async def acquire(self):
        yield FakeConnection(self)

    async def close(self):
        self.closed = True


class ScriptedQuoteService:
    """Quote service replaying scripted outcomes per symbol.

    Each outcome is either a list of RawCandle or an exception instance.
    The last outcome repeats once the script is exhausted.
    """

    def __init__(self, scripts=None, default=None):
        self.scripts = {symbol: list(outcomes) for symbol, outcomes in (scripts or {}).items()}
        self.default = default if default is not None else []
        self.calls = []
        self.call_times = []

    async def fetch_historical_range(self, symbol, period, adjust, start, end):
        self.calls.append((symbol, start, end))
        self.call_times.append(time.monotonic())
        outcomes = self.scripts.get(symbol)
        if not outcomes:
            outcome = self.default
        elif len(outcomes) > 1:
            outcome = outcomes.pop(0)
        else:
            outcome = outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return list(outcome)


@pytest.fixture
def fake_pool():
    return FakePool()


@pytest.fixture
def store(fake_pool):
    return PostgresCandleStore(pool=fake_pool)
