"""Sliding-window rate limiter shared by every outbound API call.

Bluesky allows 3000 requests per 5 minutes; the defaults stay at 2500 to
leave headroom, with a 50 ms floor between consecutive grants.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Callable, Deque, Dict, Optional

from skyrapport.network.deadline import Deadline

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 2500
DEFAULT_WINDOW_SECONDS = 300.0
DEFAULT_MIN_DELAY_SECONDS = 0.05


@dataclass
class RateLimitStats:
    used: int
    remaining: int
    window_reset_in: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


class RateLimiter:
    """Request-count limiter over a trailing window, plus minimum spacing.

    Thread-safe: pruning, the quota check and recording a grant happen under
    one lock, so no two callers can both be granted the last slot. The lock
    is released while waiting.
    """

    def __init__(
        self,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        min_delay_seconds: float = DEFAULT_MIN_DELAY_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.min_delay_seconds = min_delay_seconds
        self._clock = clock
        self._sleeper = sleeper
        self._grants: Deque[float] = deque()
        self._last_grant: Optional[float] = None
        self._lock = threading.Lock()

    def _oldest_expiry(self) -> float:
        return self._grants[0] + self.window_seconds

    def _prune(self, now: float) -> None:
        # Same expression as the quota wait: a wait <= 0 always means a freed slot
        while self._grants and self._oldest_expiry() <= now:
            self._grants.popleft()

    def _wait_needed(self, now: float) -> float:
        quota_wait = 0.0
        if len(self._grants) >= self.max_requests:
            quota_wait = self._oldest_expiry() - now
        spacing_wait = 0.0
        if self._last_grant is not None:
            spacing_wait = self._last_grant + self.min_delay_seconds - now
        return max(quota_wait, spacing_wait)

    def acquire(self, deadline: Optional[Deadline] = None) -> None:
        """Block until one request may be issued, then record it.

        Re-evaluates after every wait: other callers may have taken the slot
        in the meantime, or more grants may have expired.
        """
        waits = 0
        while True:
            if deadline is not None:
                deadline.check()

            with self._lock:
                now = self._clock()
                self._prune(now)
                wait = self._wait_needed(now)
                if wait <= 0:
                    self._grants.append(now)
                    self._last_grant = now
                    return
                used = len(self._grants)
                at_quota = used >= self.max_requests

            waits += 1
            if at_quota:
                logger.warning(
                    "Rate limit reached (%d/%d in %.0fs window). Waiting %.2fs...",
                    used,
                    self.max_requests,
                    self.window_seconds,
                    wait,
                )
            elif waits > 1:
                logger.debug("Spacing wait %.3fs (recheck %d)", wait, waits)

            if deadline is not None:
                deadline.sleep(wait)
            else:
                self._sleeper(wait)

    def stats(self) -> RateLimitStats:
        """Return usage in the current window. Only prunes; records nothing."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            used = len(self._grants)
            reset_in = (
                self._grants[0] + self.window_seconds - now if self._grants else 0.0
            )
        return RateLimitStats(
            used=used,
            remaining=max(0, self.max_requests - used),
            window_reset_in=max(0.0, reset_in),
        )

    def is_near_limit(self, threshold: float = 0.9) -> bool:
        return self.stats().used / self.max_requests >= threshold

    def reset(self) -> None:
        """Forget all recorded grants."""
        with self._lock:
            self._grants.clear()
            self._last_grant = None
