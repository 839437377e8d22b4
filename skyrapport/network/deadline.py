"""Cancellation and deadline handle passed to every suspension point."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from skyrapport.exceptions import DeadlineExceededError, SyncCancelledError


class Deadline:
    """An optional expiry on the monotonic clock plus a cancellation flag.

    A single Deadline is shared by all calls of one sync run. ``cancel()`` may
    be called from any thread; waits in progress wake up immediately.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._clock = clock
        self._expires_at = clock() + timeout if timeout is not None else None
        self._cancelled = threading.Event()

    @classmethod
    def none(cls) -> "Deadline":
        """A deadline that never expires and is never cancelled."""
        return cls()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when there is no expiry."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def check(self) -> None:
        """Raise if the run was cancelled or the deadline has passed."""
        if self._cancelled.is_set():
            raise SyncCancelledError("Sync cancelled by caller")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceededError("Sync deadline exceeded")

    def clamp(self, timeout: float) -> float:
        """Limit a per-call timeout to the time left."""
        self.check()
        remaining = self.remaining()
        if remaining is None:
            return timeout
        return min(timeout, remaining)

    def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``, waking early on cancellation.

        Raises instead of sleeping past the deadline.
        """
        self.check()
        remaining = self.remaining()
        if remaining is not None and seconds > remaining:
            self._cancelled.wait(remaining)
            self.check()
            raise DeadlineExceededError(
                "Sync deadline exceeded while waiting",
                details=f"needed {seconds:.2f}s, had {remaining:.2f}s",
            )
        self._cancelled.wait(seconds)
        self.check()
