"""Shared concurrency primitives.

This module provides:
- PacingGate: the global minimum-interval throttle for upstream calls
- singleflight_cached: coalesces concurrent work for the same key

Usage:
    gate = PacingGate(min_interval=0.1)
    await gate.acquire()
    response = await call_upstream()
"""

from .pacing import PacingGate
from .singleflight import consume_future_exception, singleflight_cached

__all__ = [
    "PacingGate",
    "consume_future_exception",
    "singleflight_cached",
]
