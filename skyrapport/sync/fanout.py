"""Bounded fan-out/fan-in with per-item result isolation.

Items are processed in fixed-size batches. Within a batch every call runs
concurrently on a thread pool; each outcome is captured as a TaskResult, so
one failing item never aborts its siblings. Aggregate counts are computed
from the result list alone.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from skyrapport.exceptions import (
    AuthenticationError,
    DeadlineExceededError,
    ItemLevelError,
    SyncCancelledError,
)
from skyrapport.network.deadline import Deadline

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_BATCH_SIZE = 10

# Errors that end the whole run rather than one item.
RUN_TERMINATING = (AuthenticationError, SyncCancelledError, DeadlineExceededError)


@dataclass
class TaskResult(Generic[T, R]):
    item: T
    value: Optional[R] = None
    error: Optional[ItemLevelError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchOutcome:
    succeeded: int
    failed: int
    total: int


def summarize(results: Sequence[TaskResult]) -> BatchOutcome:
    """Success/failure counts and the sum of integer values of successes."""
    succeeded = [r for r in results if r.ok]
    return BatchOutcome(
        succeeded=len(succeeded),
        failed=len(results) - len(succeeded),
        total=sum(r.value for r in succeeded if isinstance(r.value, int)),
    )


def attempt(item: T, func: Callable[[T], R]) -> TaskResult[T, R]:
    """Run one call with the same isolation rules as a batch member."""
    try:
        return TaskResult(item=item, value=func(item))
    except RUN_TERMINATING:
        raise
    except Exception as exc:
        logger.warning("Item %r failed: %s", item, exc)
        return TaskResult(item=item, error=ItemLevelError(item, exc))


def run_batched(
    items: Sequence[T],
    func: Callable[[T], R],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    deadline: Optional[Deadline] = None,
    on_batch: Optional[Callable[[int, int], None]] = None,
) -> List[TaskResult[T, R]]:
    """Apply ``func`` to every item, ``batch_size`` at a time.

    Results come back in item order. Authentication, cancellation and deadline
    errors are re-raised once the batch has drained; anything else becomes an
    :class:`ItemLevelError` on that item's result.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    results: List[TaskResult[T, R]] = []
    total = len(items)

    for start in range(0, total, batch_size):
        if deadline is not None:
            deadline.check()
        batch = items[start:start + batch_size]
        terminal: Optional[Exception] = None

        with ThreadPoolExecutor(max_workers=len(batch)) as pool:
            futures = [pool.submit(func, item) for item in batch]
            for item, future in zip(batch, futures):
                try:
                    results.append(TaskResult(item=item, value=future.result()))
                except RUN_TERMINATING as exc:
                    terminal = terminal or exc
                except Exception as exc:
                    logger.warning("Item %r failed: %s", item, exc)
                    results.append(TaskResult(item=item, error=ItemLevelError(item, exc)))

        if terminal is not None:
            raise terminal

        done = min(start + batch_size, total)
        logger.info("Processed %d/%d items", done, total)
        if on_batch:
            on_batch(done, total)

    return results
