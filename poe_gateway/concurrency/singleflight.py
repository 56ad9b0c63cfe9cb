"""Async single-flight helper.

Coordinates concurrent requests for the same key so only one coroutine
performs the work while the others await the same future.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

K = TypeVar("K")
T = TypeVar("T")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    if fut.cancelled():
        return
    fut.exception()


async def singleflight_cached(
    key: K,
    *,
    lock: asyncio.Lock,
    inflight: dict[K, asyncio.Future[T]],
    cache_get: Callable[[K], Optional[T]],
    cache_set: Callable[[K, T], None],
    work: Callable[[], Awaitable[T]],
) -> T:
    """Return the cached value for key, or compute it once.

    - If cached, returns immediately.
    - If in flight, waits for the existing future. Waiters never cancel the
      shared future; if the creator itself is cancelled, a waiter retries and
      may become the new creator.
    - Otherwise creates a future and runs *work* as the single creator.
      Failures are delivered to every waiter and nothing is cached.
    """
    while True:
        async with lock:
            cached = cache_get(key)
            if cached is not None:
                return cached

            fut = inflight.get(key)
            if fut is None:
                fut = asyncio.get_running_loop().create_future()
                fut.add_done_callback(consume_future_exception)
                inflight[key] = fut
                creator = True
            else:
                creator = False

        if creator:
            break

        await asyncio.wait([fut])
        if fut.cancelled():
            continue
        return fut.result()

    try:
        value = await work()
    except asyncio.CancelledError:
        fut.cancel()
        raise
    except Exception as exc:
        fut.set_exception(exc)
        raise
    else:
        async with lock:
            cache_set(key, value)
        fut.set_result(value)
        return value
    finally:
        async with lock:
            if inflight.get(key) is fut:
                inflight.pop(key, None)
