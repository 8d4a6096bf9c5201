"""Shared concurrency primitives for the ingestion pipeline.

Three patterns are exposed:

1. **throttled_gather** -- a drop-in replacement for ``asyncio.gather`` that
   wraps each awaitable in a semaphore acquire/release.  This is the bounded
   worker pool the ingestion coordinator fans documents out on.

2. **retry_async** -- re-invokes a coroutine factory on a given exception
   type with exponential backoff, up to a fixed number of extra attempts.
   Used for per-batch embedding retries.

3. **KeyedLock** -- one ``asyncio.Lock`` per string key, so writes to the
   same document serialize while different documents proceed in parallel.

No module-level semaphore is shared: callers pass their own limits, which
come from typed settings built once at startup.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, TypeVar

import structlog

from chatapp.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    limit: int,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with at most *limit* in flight.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    limit:
        Maximum number of awaitables executing at once.  Values below 1
        are treated as 1 so a misconfiguration cannot deadlock the pool.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


async def retry_async(
    fn: Callable[[], Awaitable[_T]],
    retry_on: type[BaseException] | tuple[type[BaseException], ...],
    max_retries: int = 3,
    backoff_s: float = 1.0,
    logger: structlog.BoundLogger | None = None,
    event: str = "retrying",
    **log_context: object,
) -> _T:
    """Await ``fn()`` and retry on *retry_on* with exponential backoff.

    ``fn`` is called at most ``max_retries + 1`` times.  The delay before
    retry *n* (1-based) is ``backoff_s * 2 ** (n - 1)``.  The last exception
    is re-raised once attempts are exhausted; exceptions not matching
    *retry_on* propagate immediately.
    """
    if logger is None:
        logger = _logger

    attempt = 0
    while True:
        attempt += 1
        try:
            return await fn()
        except retry_on as exc:
            if attempt > max_retries:
                raise
            delay = backoff_s * 2 ** (attempt - 1)
            logger.warning(
                event,
                attempt=attempt,
                max_retries=max_retries,
                backoff_s=delay,
                error=str(exc),
                **log_context,
            )
            await asyncio.sleep(delay)


class KeyedLock:
    """A lazily-populated map of ``asyncio.Lock`` objects keyed by string.

    Locks are never evicted; the key space is the set of document keys,
    which is bounded by the corpus size.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        async with self.get(key):
            yield
