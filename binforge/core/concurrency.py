"""Thread-pool helpers for bounded, order-preserving fan-out.

Network lookups, transfers and external builds are the only blocking
operations in a run, so plain worker threads are enough. Results always come
back in input order regardless of completion order.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
U = TypeVar("U")


def _worker_count(limit: int | None, size: int) -> int:
    if limit is None:
        return max(size, 1)
    return max(min(limit, size), 1)


def map_fail_fast(
    fn: Callable[[T], U],
    items: Iterable[T],
    *,
    max_workers: int | None = None,
    thread_name_prefix: str = "binforge",
) -> list[U]:
    """Apply *fn* to every item concurrently; stop scheduling on first error.

    Work that has not started when a failure is observed is cancelled;
    work already running is allowed to finish. The first exception in input
    order among the settled futures is re-raised.
    """
    items = list(items)
    if not items:
        return []
    workers = _worker_count(max_workers, len(items))
    with ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix=thread_name_prefix
    ) as executor:
        futures = [executor.submit(fn, item) for item in items]
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        if pending and any(f.exception() is not None for f in done):
            for future in pending:
                future.cancel()
        # Leaving the executor drains whatever is still running
    return _collect(futures)


def map_settled(
    fn: Callable[[T], U],
    items: Iterable[T],
    *,
    max_workers: int | None = None,
    thread_name_prefix: str = "binforge",
) -> list[U]:
    """Apply *fn* to every item and wait for all of them to settle.

    Unlike :func:`map_fail_fast`, a failure does not cancel other work. Once
    everything has settled, the first failure in input order is raised.
    """
    items = list(items)
    if not items:
        return []
    workers = _worker_count(max_workers, len(items))
    with ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix=thread_name_prefix
    ) as executor:
        futures = [executor.submit(fn, item) for item in items]
    return _collect(futures)


def _collect(futures: list[Future[U]]) -> list[U]:
    results: list[U] = []
    first_error: BaseException | None = None
    for future in futures:
        if future.cancelled():
            continue
        error = future.exception()
        if error is not None:
            if first_error is None:
                first_error = error
            else:
                logger.debug("Suppressed additional failure: %s", error)
            continue
        results.append(future.result())
    if first_error is not None:
        raise first_error
    return results


class Gate:
    """A counting gate around an exclusive resource.

    With ``capacity=1`` this serializes access to a shared toolchain
    workspace that cannot be re-entered concurrently.
    """

    def __init__(self, capacity: int = 1) -> None:
        if capacity < 1:
            raise ValueError("Gate capacity must be at least 1")
        self.capacity = capacity
        self._semaphore = threading.BoundedSemaphore(capacity)

    @contextmanager
    def hold(self) -> Iterator[None]:
        with self._semaphore:
            yield
