"""Tests for bounded exponential backoff."""

import pytest

from candlefetcher.exceptions import QuoteServiceError, RetryExhaustedError
from candlefetcher.models.data_models import RetryState
from candlefetcher.utils.retry_handler import RetryHandler


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class CountingLimiter:
    def __init__(self):
        self.admits = 0

    async def admit(self):
        self.admits += 1
        return 0.0


class Flaky:
    """Fails a fixed number of times, then returns a value."""

    def __init__(self, failures, value="ok"):
        self.failures = failures
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise QuoteServiceError(f"failure {self.calls}")
        return self.value


class TestBackoffSchedule:
    """Delay sequence."""

    def test_default_schedule(self):
        handler = RetryHandler()

        assert handler.backoff_schedule() == [0.5, 1.0]

    def test_schedule_capped_and_non_decreasing(self):
        handler = RetryHandler(max_attempts=6, base_delay=0.5, max_delay=2.0)

        schedule = handler.backoff_schedule()

        assert schedule == [0.5, 1.0, 2.0, 2.0, 2.0]
        assert all(a <= b for a, b in zip(schedule, schedule[1:]))
        assert max(schedule) <= handler.max_delay

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryHandler(max_attempts=0)


class TestExecute:
    """Retry loop behaviour."""

    @pytest.mark.asyncio
    async def test_success_after_failures(self):
        sleep = RecordingSleep()
        limiter = CountingLimiter()
        handler = RetryHandler(max_attempts=3, rate_limiter=limiter, sleep=sleep)
        func = Flaky(failures=2)
        state = RetryState()

        result = await handler.execute(func, state=state)

        assert result == "ok"
        assert state.attempt == 3
        assert sleep.delays == [0.5, 1.0]
        assert limiter.admits == 3
        assert handler.get_stats().successful_calls == 1
        assert handler.get_stats().retries == 2

    @pytest.mark.asyncio
    async def test_exhaustion_raises_with_last_error(self):
        sleep = RecordingSleep()
        handler = RetryHandler(max_attempts=3, sleep=sleep)
        func = Flaky(failures=10)
        retries = []

        with pytest.raises(RetryExhaustedError) as exc_info:
            await handler.execute(func, on_retry=lambda state, delay: retries.append((state.attempt, delay)))

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, QuoteServiceError)
        assert func.calls == 3
        # No sleep after the final attempt
        assert sleep.delays == [0.5, 1.0]
        assert retries == [(1, 0.5), (2, 1.0)]
        assert handler.get_stats().max_retries_reached == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates(self):
        sleep = RecordingSleep()
        handler = RetryHandler(max_attempts=3, retryable_exceptions=[QuoteServiceError], sleep=sleep)

        async def broken():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            await handler.execute(broken)
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_backoff_restarts_for_each_call(self):
        sleep = RecordingSleep()
        handler = RetryHandler(max_attempts=2, sleep=sleep)

        await handler.execute(Flaky(failures=1))
        await handler.execute(Flaky(failures=1))

        assert sleep.delays == [0.5, 0.5]
