"""Bounded-concurrency execution of a worker over a batch.

Workers share a single claim cursor instead of a static partition of the
batch: every thread repeatedly claims the next unclaimed index, so a few
very large images cannot leave the other threads idle. Results are written
into a pre-sized list at the claimed index, so the output order always
matches the input order whatever the completion order is.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, TypeVar

from .errors import BatchCancelledError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

T = TypeVar("T")
R = TypeVar("R")


class ClaimCursor:
    """Lock-protected fetch-and-increment counter over ``[0, limit)``."""

    def __init__(self, limit: int) -> None:
        self._limit = limit
        self._next = 0
        self._lock = threading.Lock()

    def claim(self) -> int | None:
        """Claim the next index, or return None once the range is exhausted."""
        with self._lock:
            if self._next >= self._limit:
                return None
            index = self._next
            self._next += 1
            return index


def run_batch(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T, int], R],
    cancel_event: threading.Event | None = None,
) -> list[R]:
    """Run ``worker(item, index)`` over ``items`` with at most ``concurrency`` in flight.

    Args:
        items: Batch items
        concurrency: Maximum number of concurrent workers (>= 1)
        worker: Callable applied to each item and its index
        cancel_event: Optional event; once set no new index is claimed

    Returns:
        Results with ``result[i]`` computed from ``items[i]``

    Raises:
        ValueError: If concurrency is below 1
        BatchCancelledError: If cancellation was observed before the batch finished
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be at least 1, got {concurrency}")

    total = len(items)
    output: list[R | None] = [None] * total
    cursor = ClaimCursor(total)
    errors: list[Exception] = []
    cancelled = threading.Event()

    def drain() -> None:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                cancelled.set()
                return
            if errors:
                return
            index = cursor.claim()
            if index is None:
                return
            try:
                output[index] = worker(items[index], index)
            except Exception as exc:  # re-raised in the calling thread
                errors.append(exc)
                return

    thread_count = min(concurrency, max(1, total))
    if thread_count == 1:
        drain()
    else:
        threads = [
            threading.Thread(target=drain, name=f"webp-lab-worker-{n}", daemon=True)
            for n in range(thread_count)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    if errors:
        raise errors[0]
    if cancelled.is_set():
        raise BatchCancelledError("Batch cancelled before all items were processed")

    return output  # type: ignore[return-value]
