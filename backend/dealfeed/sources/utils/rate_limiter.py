"""Per-host request throttling for upstream calls."""

import asyncio
import time
from typing import Callable, Dict, Optional

# Requests per minute for known upstream hosts
DEFAULT_HOST_LIMITS_RPM: Dict[str, int] = {
    "sheets.googleapis.com": 60,
    "affapi.banggood.com": 60,
    "api-sg.aliexpress.com": 30,
    "api.aliexpress.com": 30,
}


class TokenBucket:
    """Starts full, refills continuously; each request spends one token."""

    def __init__(
        self,
        rate: float,
        capacity: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
    ):
        """Initialize token bucket.

        Args:
            rate: Tokens added per second
            capacity: Burst size
            clock: Monotonic time source
            sleep: Coroutine used to wait for refills
        """
        self.rate = rate
        self.capacity = capacity
        self.tokens = capacity
        self._clock = clock
        self._sleep = sleep
        self._stamp = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        self.tokens = min(self.capacity, self.tokens + (now - self._stamp) * self.rate)
        self._stamp = now

    async def take(self) -> float:
        """Spend one token; returns the seconds spent waiting."""
        waited = 0.0
        async with self._lock:
            self._refill()
            while self.tokens < 1:
                delay = (1 - self.tokens) / self.rate
                await self._sleep(delay)
                waited += delay
                self._refill()
            self.tokens -= 1
        return waited


class DomainRateLimiter:
    """One bucket per upstream host, shared by every adapter.

    A slow vendor never throttles calls to another one. Bursts of 10% of the
    per-minute limit (at least 2) are allowed.
    """

    def __init__(
        self,
        limits_rpm: Optional[Dict[str, int]] = None,
        default_rpm: int = 30,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], "asyncio.Future"] = asyncio.sleep,
    ):
        self.limits_rpm = {**DEFAULT_HOST_LIMITS_RPM, **(limits_rpm or {})}
        self.default_rpm = default_rpm
        self._clock = clock
        self._sleep = sleep
        self._buckets: Dict[str, TokenBucket] = {}

    def bucket(self, host: str) -> TokenBucket:
        host = host.lower()
        if host not in self._buckets:
            rpm = self.limits_rpm.get(host, self.default_rpm)
            self._buckets[host] = TokenBucket(
                rate=rpm / 60.0,
                capacity=max(2.0, rpm / 10.0),
                clock=self._clock,
                sleep=self._sleep,
            )
        return self._buckets[host]

    async def acquire(self, host: str) -> float:
        """Wait until ``host`` may be called again; returns seconds waited."""
        return await self.bucket(host).take()
