"""TTL cache for analytics snapshots.

One snapshot row under a fixed key. A snapshot is served only while
``now - computed_at < ttl``; otherwise it is recomputed, persisted and then
returned. Readers always get a complete snapshot.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from skyrapport.analytics.engine import AnalyticsEngine
from skyrapport.models import AnalyticsSnapshot, NoiseScore, ReciprocityScore, now_ms
from skyrapport.storage.repository import Repository

logger = logging.getLogger(__name__)

# Default TTL: 15 minutes
DEFAULT_TTL_SECONDS = 15 * 60

DEFAULT_NOISE_THRESHOLD = 0.7
DEFAULT_RECIPROCITY_THRESHOLD = 0.3


class AnalyticsCache:
    """Memoizes :class:`AnalyticsEngine` output in the local store."""

    def __init__(
        self,
        engine: AnalyticsEngine,
        repository: Repository,
        ttl: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._engine = engine
        self._repo = repository
        self._ttl_ms = int(ttl * 1000)
        self._clock = clock
        self._lock = threading.Lock()

    def _is_fresh(self, snapshot: AnalyticsSnapshot) -> bool:
        return self._clock() - snapshot.computed_at < self._ttl_ms

    def get_analytics(self) -> AnalyticsSnapshot:
        """Return the cached snapshot, recomputing first if it is missing or stale."""
        with self._lock:
            snapshot = self._repo.get_snapshot()
            if snapshot is not None and self._is_fresh(snapshot):
                return snapshot
            if snapshot is not None:
                logger.info("Analytics cache expired, recomputing")
            return self._compute_and_cache()

    def refresh(self) -> AnalyticsSnapshot:
        """Recompute unconditionally."""
        with self._lock:
            return self._compute_and_cache()

    def _compute_and_cache(self) -> AnalyticsSnapshot:
        noise, reciprocity, contributors, posts = self._engine.compute_all()
        snapshot = AnalyticsSnapshot(
            computed_at=self._clock(),
            noise_scores=noise,
            reciprocity_scores=reciprocity,
            total_contributors=contributors,
            total_posts=posts,
        )
        self._repo.save_snapshot(snapshot)
        logger.info("Cached analytics for %d contributors", contributors)
        return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._repo.clear_snapshot()
        logger.info("Analytics cache invalidated")

    def noise_outliers(self, threshold: float = DEFAULT_NOISE_THRESHOLD) -> List[NoiseScore]:
        """Accounts whose noise score exceeds ``threshold``, noisiest first."""
        return [s for s in self.get_analytics().noise_scores if s.score > threshold]

    def non_reciprocal(
        self, threshold: float = DEFAULT_RECIPROCITY_THRESHOLD
    ) -> List[ReciprocityScore]:
        """Accounts you engage with who rarely engage back."""
        return [
            s
            for s in self.get_analytics().reciprocity_scores
            if s.your_engagement > 0 and s.score < threshold
        ]

    def cached_at(self) -> Optional[int]:
        snapshot = self._repo.get_snapshot()
        return snapshot.computed_at if snapshot else None
