"""Bounded-concurrency helpers for the ingestion pipeline.

Two patterns are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with each awaitable wrapped
   in a semaphore acquire/release, for an arbitrary list of coroutines.

2. **bounded_map** -- the fan-out/collect pattern used by link extraction
   and keyword extraction: apply one async function to every item with at
   most ``limit`` calls in flight, keep successes in input order and
   collect failures alongside the item that caused them instead of
   aborting the whole batch.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import structlog

from ragindex.utils.logging import get_logger

_T = TypeVar("_T")
_R = TypeVar("_R")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: Sequence[Awaitable[_T]],
    limit: int,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with at most ``limit`` executing at once.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    limit:
        Maximum number of awaitables in flight.  Must be at least 1.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")

    semaphore = asyncio.Semaphore(limit)

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    return await asyncio.gather(
        *(_wrapped(c) for c in coros),
        return_exceptions=return_exceptions,
    )


@dataclass
class ItemFailure(Generic[_T]):
    """One item that raised inside :func:`bounded_map`."""

    item: _T
    error: BaseException


@dataclass
class PoolResult(Generic[_T, _R]):
    """Outcome of a :func:`bounded_map` run.

    ``results`` holds ``(item, value)`` pairs for every successful call in
    input order; ``failures`` holds every item whose call raised.
    """

    results: list[tuple[_T, _R]] = field(default_factory=list)
    failures: list[ItemFailure[_T]] = field(default_factory=list)

    @property
    def values(self) -> list[_R]:
        return [value for _, value in self.results]


async def bounded_map(
    fn: Callable[[_T], Awaitable[_R]],
    items: Sequence[_T],
    limit: int,
    logger: structlog.BoundLogger | None = None,
    error_event: str = "bounded_map_item_failed",
) -> PoolResult[_T, _R]:
    """Apply ``fn`` to every item with bounded concurrency, collecting errors.

    One item's failure never cancels its siblings.  ``asyncio.CancelledError``
    is not collected; it propagates so the caller can shut down.
    """
    log = logger or _logger
    raw = await throttled_gather([fn(item) for item in items], limit=limit)

    outcome: PoolResult[_T, _R] = PoolResult()
    for item, value in zip(items, raw):
        if isinstance(value, asyncio.CancelledError):
            raise value
        if isinstance(value, BaseException):
            log.warning(error_event, item=repr(item)[:200], error=str(value))
            outcome.failures.append(ItemFailure(item=item, error=value))
        else:
            outcome.results.append((item, value))
    return outcome
