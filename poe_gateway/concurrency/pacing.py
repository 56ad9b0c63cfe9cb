"""Global pacing gate for outbound upstream calls."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Awaitable, Callable

logger = logging.getLogger("poe-gateway")


class PacingGate:
    """Process-wide minimum-interval throttle.

    Consecutive permitted calls are at least ``min_interval`` seconds apart.
    Callers that arrive early are delayed, never rejected. An interval of
    zero (or less) disables pacing.

    Permit decisions are serialized by a lock held across the sleep, so
    concurrent callers queue in arrival order and are released one interval
    apart.
    """

    def __init__(
        self,
        min_interval: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.min_interval = max(float(min_interval), 0.0)
        self._clock = clock
        self._sleep = sleep
        self._last_permit = -math.inf
        self._lock = asyncio.Lock()
        self._total_wait = 0.0

    @property
    def enabled(self) -> bool:
        return self.min_interval > 0

    @property
    def last_permit(self) -> float:
        return self._last_permit

    @property
    def total_wait(self) -> float:
        """Seconds callers have spent waiting on this gate so far."""
        return self._total_wait

    async def acquire(self) -> float:
        """Wait until the next call is permitted; return the wait applied."""
        if not self.enabled:
            return 0.0
        async with self._lock:
            now = self._clock()
            wait_time = self._last_permit + self.min_interval - now
            if wait_time > 0:
                logger.debug("Pacing upstream call for %.3fs", wait_time)
                await self._sleep(wait_time)
                now = self._clock()
            else:
                wait_time = 0.0
            self._last_permit = now
            self._total_wait += wait_time
            return wait_time
