"""Local store contract and an in-memory implementation.

The engine needs only keyed upsert/get/get-all, equality and range lookups
on a field, count, clear and range deletion by a timestamp field. Records
are plain dicts; keys are strings.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

PROFILES = "profiles"
POSTS = "posts"
INTERACTIONS = "interactions"
ENGAGEMENTS = "engagements"
SYNC_STATE = "sync_state"
CACHED_ANALYTICS = "cached_analytics"

# Fields each table is queried by; stores may index these.
TABLE_INDEXES: Dict[str, Tuple[str, ...]] = {
    PROFILES: ("handle",),
    POSTS: ("author_did", "contributor_did", "post_type", "created_at", "fetched_at"),
    INTERACTIONS: ("type", "target_author_did", "created_at"),
    ENGAGEMENTS: ("type", "from_did", "created_at"),
    SYNC_STATE: (),
    CACHED_ANALYTICS: (),
}


@runtime_checkable
class LocalStore(Protocol):
    """Anything the engine can persist entities into."""

    def upsert(self, table: str, key: str, record: Dict[str, Any]) -> None: ...

    def upsert_many(self, table: str, items: Iterable[Tuple[str, Dict[str, Any]]]) -> None: ...

    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]: ...

    def get_all(self, table: str) -> List[Dict[str, Any]]: ...

    def get_by_index(self, table: str, field: str, value: Any) -> List[Dict[str, Any]]: ...

    def get_by_index_range(
        self, table: str, field: str, low: Optional[Any] = None, high: Optional[Any] = None
    ) -> List[Dict[str, Any]]: ...

    def count(self, table: str) -> int: ...

    def delete(self, table: str, key: str) -> bool: ...

    def clear(self, table: str) -> None: ...

    def delete_older_than(self, table: str, field: str, timestamp: Any) -> int: ...


def _check_table(table: str) -> None:
    if table not in TABLE_INDEXES:
        raise KeyError(f"Unknown table '{table}'")


def _in_range(value: Any, low: Optional[Any], high: Optional[Any]) -> bool:
    if value is None:
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


class MemoryStore:
    """Thread-safe dict-backed store; records are copied in and out.

    Iteration order of ``get_all`` is first-insertion order.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {t: {} for t in TABLE_INDEXES}
        self._lock = threading.Lock()

    def upsert(self, table: str, key: str, record: Dict[str, Any]) -> None:
        _check_table(table)
        with self._lock:
            self._tables[table][key] = copy.deepcopy(record)

    def upsert_many(self, table: str, items: Iterable[Tuple[str, Dict[str, Any]]]) -> None:
        _check_table(table)
        with self._lock:
            for key, record in items:
                self._tables[table][key] = copy.deepcopy(record)

    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            record = self._tables[table].get(key)
            return copy.deepcopy(record) if record is not None else None

    def get_all(self, table: str) -> List[Dict[str, Any]]:
        _check_table(table)
        with self._lock:
            return [copy.deepcopy(r) for r in self._tables[table].values()]

    def get_by_index(self, table: str, field: str, value: Any) -> List[Dict[str, Any]]:
        return [r for r in self.get_all(table) if r.get(field) == value]

    def get_by_index_range(
        self, table: str, field: str, low: Optional[Any] = None, high: Optional[Any] = None
    ) -> List[Dict[str, Any]]:
        return [r for r in self.get_all(table) if _in_range(r.get(field), low, high)]

    def count(self, table: str) -> int:
        _check_table(table)
        with self._lock:
            return len(self._tables[table])

    def delete(self, table: str, key: str) -> bool:
        _check_table(table)
        with self._lock:
            return self._tables[table].pop(key, None) is not None

    def clear(self, table: str) -> None:
        _check_table(table)
        with self._lock:
            self._tables[table].clear()

    def delete_older_than(self, table: str, field: str, timestamp: Any) -> int:
        _check_table(table)
        with self._lock:
            rows = self._tables[table]
            stale = [k for k, r in rows.items() if r.get(field) is not None and r[field] < timestamp]
            for key in stale:
                del rows[key]
            return len(stale)
