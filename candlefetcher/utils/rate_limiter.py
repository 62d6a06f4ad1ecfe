"""
Rate Limiter for quote API requests

A single-slot admission gate shared by every worker: consecutive admissions
are spaced at least 1/requests_per_second apart. Equivalent to a leaky bucket
of size one refilled by a fixed ticker.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Optional


@dataclass
class RateLimitStats:
    """Statistics for rate limiter"""
    total_admissions: int = 0
    admissions_throttled: int = 0
    total_wait_time: float = 0.0
    average_wait_time: float = 0.0


class RateLimiter:
    """
    Interval gate for async operations

    admit() blocks until the next slot is free. The lock is held while
    sleeping so two workers can never be admitted inside one interval.
    """

    def __init__(self, requests_per_second: float, clock=time.monotonic):
        """
        Initialize rate limiter

        Args:
            requests_per_second: Sustained requests per second allowed
            clock: Monotonic clock, seconds
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")

        self.rate = requests_per_second
        self.interval = 1.0 / requests_per_second
        self._clock = clock

        # Earliest instant the next admission may happen
        self._next_slot: Optional[float] = None

        # Synchronization
        self._lock = asyncio.Lock()

        # Statistics
        self.stats = RateLimitStats()

    async def __aenter__(self):
        """Async context manager entry"""
        await self.admit()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        pass

    async def admit(self) -> float:
        """
        Wait for the next admission slot

        Returns:
            Time waited in seconds
        """
        async with self._lock:
            start = self._clock()
            throttled = False

            if self._next_slot is not None:
                # asyncio may wake a timer a hair early, so re-check
                while True:
                    remaining = self._next_slot - self._clock()
                    if remaining <= 0:
                        break
                    throttled = True
                    await asyncio.sleep(remaining)

            admitted_at = self._clock()
            self._next_slot = admitted_at + self.interval

            waited = admitted_at - start
            self.stats.total_admissions += 1
            if throttled:
                self.stats.admissions_throttled += 1
                self.stats.total_wait_time += waited
                self.stats.average_wait_time = (
                    self.stats.total_wait_time / self.stats.admissions_throttled
                )
            return waited

    def get_stats(self) -> RateLimitStats:
        """Get rate limiter statistics"""
        return self.stats

    def reset_stats(self):
        """Reset statistics"""
        self.stats = RateLimitStats()
