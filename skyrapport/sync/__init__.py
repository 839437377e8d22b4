"""Sync package: staged, resumable collection into the local store.

Provides:
- SyncOrchestrator: Ordered graph / timeline / activity / engagement stages
- SyncStateTracker: Persisted per-stage status rows
- run_batched: Bounded fan-out with per-item result isolation
"""

from skyrapport.sync.fanout import BatchOutcome, TaskResult, attempt, run_batched, summarize
from skyrapport.sync.orchestrator import SyncOptions, SyncOrchestrator, SyncReport
from skyrapport.sync.state import SYNC_KEYS, SyncStateTracker, SyncSummary

__all__ = [
    "BatchOutcome",
    "SYNC_KEYS",
    "SyncOptions",
    "SyncOrchestrator",
    "SyncReport",
    "SyncStateTracker",
    "SyncSummary",
    "TaskResult",
    "attempt",
    "run_batched",
    "summarize",
]
