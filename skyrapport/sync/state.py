"""Sync state tracking: per-stage status rows that drive resumption.

Each stage key moves idle -> syncing -> idle (success) or error. The
``syncing`` row is written before any network call so an interrupted run
leaves inspectable state behind.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional

from skyrapport.models import SyncState, SyncStatus, now_ms
from skyrapport.storage.repository import Repository

logger = logging.getLogger(__name__)

FOLLOWS = "follows"
FOLLOWERS = "followers"
TIMELINE = "timeline"
MY_POSTS = "my-posts"
MY_LIKES = "my-likes"

SYNC_KEYS = (FOLLOWS, FOLLOWERS, TIMELINE, MY_POSTS, MY_LIKES)


@dataclass
class SyncSummary:
    """What a status display needs, derived only from stored rows."""

    last_full_sync: Optional[int]
    is_any_running: bool
    has_errors: bool
    states: Dict[str, SyncStatus] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)


@dataclass
class StageRun:
    """Mutable progress handle yielded by :meth:`SyncStateTracker.track`."""

    key: str
    items: int = 0


class SyncStateTracker:
    """Reads and writes SyncState rows. Only the orchestrator mutates them."""

    def __init__(self, repository: Repository) -> None:
        self._repo = repository

    def get(self, key: str) -> Optional[SyncState]:
        return self._repo.get_sync_state(key)

    def all(self) -> List[SyncState]:
        return self._repo.all_sync_states()

    def _update(self, key: str, **changes) -> SyncState:
        state = self.get(key) or SyncState(key=key)
        for name, value in changes.items():
            setattr(state, name, value)
        self._repo.save_sync_state(state)
        return state

    def start(self, key: str) -> SyncState:
        """Mark a stage as running. Clears any previous error."""
        return self._update(key, status=SyncStatus.SYNCING, error=None)

    def complete(
        self, key: str, cursor: Optional[str] = None, items_processed: Optional[int] = None
    ) -> SyncState:
        existing = self.get(key)
        return self._update(
            key,
            status=SyncStatus.IDLE,
            last_sync_at=now_ms(),
            cursor=cursor if cursor is not None else (existing.cursor if existing else None),
            items_processed=(
                items_processed
                if items_processed is not None
                else (existing.items_processed if existing else 0)
            ),
            error=None,
        )

    def fail(self, key: str, message: str) -> SyncState:
        return self._update(key, status=SyncStatus.ERROR, error=message or "Unknown error")

    @contextmanager
    def track(self, key: str) -> Iterator[StageRun]:
        """Run a stage body between ``start`` and ``complete``.

        Any exception escaping the body is recorded with ``fail`` and re-raised.
        """
        self.start(key)
        run = StageRun(key=key)
        try:
            yield run
        except BaseException as exc:
            message = str(exc) or type(exc).__name__
            self.fail(key, message)
            logger.error("Stage '%s' failed: %s", key, message)
            raise
        self.complete(key, items_processed=run.items)

    def last_sync_time(self, key: str) -> Optional[int]:
        state = self.get(key)
        return state.last_sync_at if state else None

    def is_syncing(self, key: str) -> bool:
        state = self.get(key)
        return state is not None and state.status is SyncStatus.SYNCING

    def is_any_syncing(self) -> bool:
        return any(s.status is SyncStatus.SYNCING for s in self.all())

    def summary(self) -> SyncSummary:
        """Overall status. ``last_full_sync`` is the oldest successful stage time."""
        last_full_sync: Optional[int] = None
        summary = SyncSummary(last_full_sync=None, is_any_running=False, has_errors=False)
        for state in self.all():
            summary.states[state.key] = state.status
            if state.status is SyncStatus.SYNCING:
                summary.is_any_running = True
            if state.status is SyncStatus.ERROR:
                summary.has_errors = True
                summary.errors[state.key] = state.error or ""
            if state.last_sync_at and (last_full_sync is None or state.last_sync_at < last_full_sync):
                last_full_sync = state.last_sync_at
        summary.last_full_sync = last_full_sync
        return summary

    def reset(self, key: str) -> None:
        self._repo.save_sync_state(SyncState(key=key))

    def clear(self) -> None:
        self._repo.clear_sync_states()
