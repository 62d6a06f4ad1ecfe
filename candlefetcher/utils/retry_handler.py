"""
Retry Handler with exponential backoff

Bounded retry for remote quote calls. Every attempt, including the first,
passes through the shared rate limiter when one is attached.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Type

from candlefetcher.exceptions import RetryExhaustedError
from candlefetcher.models.data_models import RetryState
from candlefetcher.utils.rate_limiter import RateLimiter


@dataclass
class RetryStats:
    """Statistics for retry operations"""
    total_attempts: int = 0
    successful_calls: int = 0
    failed_attempts: int = 0
    retries: int = 0
    max_retries_reached: int = 0
    total_backoff_time: float = 0.0


class RetryHandler:
    """
    Runs a coroutine function up to max_attempts times

    The delay after failed attempt n is min(base_delay * factor**(n-1), max_delay).
    Backoff state lives in a RetryState owned by the caller, so nothing is
    shared between jobs.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 2.0,
        backoff_factor: float = 2.0,
        rate_limiter: Optional[RateLimiter] = None,
        retryable_exceptions: Optional[List[Type[BaseException]]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize retry handler

        Args:
            max_attempts: Total attempts allowed, including the first
            base_delay: Delay after the first failure in seconds
            max_delay: Upper bound for any single delay in seconds
            backoff_factor: Multiplier applied per further failure
            rate_limiter: Gate passed before every attempt
            retryable_exceptions: Exceptions that trigger a retry
            sleep: Coroutine used for backoff waits
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.rate_limiter = rate_limiter
        self._sleep = sleep

        # Any ordinary error from the quote service is worth another try
        self.retryable_exceptions: Tuple[Type[BaseException], ...] = tuple(
            retryable_exceptions or [Exception]
        )

        # Statistics
        self.stats = RetryStats()

    def next_delay(self, attempt: int) -> float:
        """Backoff to wait after the given (1-based) failed attempt"""
        delay = self.base_delay * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_delay)

    def backoff_schedule(self) -> List[float]:
        """All delays a fully failing call would sleep through"""
        return [self.next_delay(attempt) for attempt in range(1, self.max_attempts)]

    async def execute(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        state: Optional[RetryState] = None,
        on_retry: Optional[Callable[[RetryState, float], None]] = None,
        **kwargs
    ) -> Any:
        """
        Execute coroutine function with retry logic

        Args:
            func: Coroutine function to execute
            *args: Positional arguments for function
            state: RetryState updated in place with attempt/last_error
            on_retry: Called with (state, delay) before each backoff sleep
            **kwargs: Keyword arguments for function

        Returns:
            Result of the first successful attempt

        Raises:
            RetryExhaustedError: when every attempt failed
        """
        if state is None:
            state = RetryState()

        for attempt in range(1, self.max_attempts + 1):
            state.attempt = attempt
            self.stats.total_attempts += 1

            if self.rate_limiter is not None:
                await self.rate_limiter.admit()

            try:
                result = await func(*args, **kwargs)
            except self.retryable_exceptions as e:
                state.last_error = e
                self.stats.failed_attempts += 1

                if attempt >= self.max_attempts:
                    break

                delay = self.next_delay(attempt)
                if on_retry is not None:
                    on_retry(state, delay)

                self.stats.retries += 1
                self.stats.total_backoff_time += delay
                await self._sleep(delay)
                continue

            self.stats.successful_calls += 1
            return result

        self.stats.max_retries_reached += 1
        raise RetryExhaustedError(
            f"Giving up after {state.attempt} attempts: {state.last_error}",
            attempts=state.attempt,
            last_error=state.last_error
        )

    def get_stats(self) -> RetryStats:
        """Get retry statistics"""
        return self.stats

    def reset_stats(self):
        """Reset statistics"""
        self.stats = RetryStats()
