"""
Per-client request throttling for the finance API.

Each client IP gets `per_window + burst` requests inside a rolling window.
Counts live in process memory, so a multi-worker deployment throttles per
worker.
"""

import asyncio
import os
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, NamedTuple

from shared.provider_settings import ProviderSettingsError, parse_int

RATE_LIMIT_ENV_VAR = "FINANCE_RATE_LIMIT_PER_MIN"
BURST_ENV_VAR = "FINANCE_RATE_LIMIT_BURST"


class RateDecision(NamedTuple):
    allowed: bool
    retry_after: float
    remaining: int


@dataclass(frozen=True)
class RateLimitSettings:
    per_window: int = 60
    burst: int = 20
    window_seconds: int = 60

    @classmethod
    def from_env(cls) -> "RateLimitSettings":
        per_window = parse_int(os.getenv(RATE_LIMIT_ENV_VAR), cls.per_window, RATE_LIMIT_ENV_VAR)
        burst = parse_int(os.getenv(BURST_ENV_VAR), cls.burst, BURST_ENV_VAR)
        if per_window <= 0:
            raise ProviderSettingsError(f"{RATE_LIMIT_ENV_VAR} must be positive (received '{per_window}')")
        if burst < 0:
            raise ProviderSettingsError(f"{BURST_ENV_VAR} cannot be negative (received '{burst}')")
        return cls(per_window=per_window, burst=burst)


class SimpleRateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: int = 60,
        burst: int = 0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._capacity = max(1, max_requests) + max(0, burst)
        self._window = float(max(1, window_seconds))
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: RateLimitSettings) -> "SimpleRateLimiter":
        return cls(settings.per_window, settings.window_seconds, settings.burst)

    @property
    def limit(self) -> int:
        return self._capacity

    async def allow(self, client_id: str) -> RateDecision:
        """Record a hit for `client_id` unless its window is already full."""
        now = self._clock()
        async with self._lock:
            hits = self._window_for(client_id, now)
            if len(hits) < self._capacity:
                hits.append(now)
                return RateDecision(True, 0.0, self._capacity - len(hits))
            oldest = hits[0]
        return RateDecision(False, max(self._window - (now - oldest), 0.0), 0)

    def remaining(self, client_id: str) -> int:
        hits = self._hits.get(client_id)
        if hits is None:
            return self._capacity
        cutoff = self._clock() - self._window
        return self._capacity - sum(1 for stamp in hits if stamp > cutoff)

    def _window_for(self, client_id: str, now: float) -> Deque[float]:
        hits = self._hits.setdefault(client_id, deque())
        cutoff = now - self._window
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits


def build_default_rate_limiter() -> SimpleRateLimiter:
    return SimpleRateLimiter.from_settings(RateLimitSettings.from_env())
