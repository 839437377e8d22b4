"""
Skyrapport SQLite Store

File Purpose: Persistent LocalStore implementation backed by SQLite
Primary Functions/Classes: SQLiteStore
Inputs and Outputs (I/O): SQLite database file

One table per entity. Each row keeps the entity as a JSON payload; the fields
the engine queries by are indexed through json_extract expressions. Upserts
keep the original rowid so get_all returns rows in first-insertion order.
"""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..exceptions import StoreError
from ..models import now_ms
from .base import TABLE_INDEXES


class SQLiteStore:
    """SQLite-backed store; survives process restarts."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file. Defaults to ~/.skyrapport/skyrapport.db
        """
        if db_path is None:
            db_path = Path.home() / ".skyrapport" / "skyrapport.db"

        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _init_db(self):
        """Initialize database schema if not exists."""
        with self._get_connection() as conn:
            for table, index_fields in TABLE_INDEXES.items():
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        key TEXT PRIMARY KEY,
                        payload TEXT NOT NULL,
                        updated_at INTEGER NOT NULL
                    )
                """
                )
                for field in index_fields:
                    conn.execute(
                        f"""
                        CREATE INDEX IF NOT EXISTS idx_{table}_{field}
                        ON {table}(json_extract(payload, '$.{field}'))
                    """
                    )
            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open {self.db_path}", original_error=e) from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise StoreError("Local store operation failed", details=str(e), original_error=e) from e
        finally:
            conn.close()

    @staticmethod
    def _table(table: str) -> str:
        if table not in TABLE_INDEXES:
            raise KeyError(f"Unknown table '{table}'")
        return table

    @staticmethod
    def _field(table: str, field: str) -> str:
        if not field.isidentifier():
            raise KeyError(f"Invalid field name '{field}'")
        return f"json_extract(payload, '$.{field}')"

    def upsert(self, table: str, key: str, record: Dict[str, Any]) -> None:
        self.upsert_many(table, [(key, record)])

    def upsert_many(self, table: str, items: Iterable[Tuple[str, Dict[str, Any]]]) -> None:
        table = self._table(table)
        stamp = now_ms()
        rows = [(key, json.dumps(record), stamp) for key, record in items]
        if not rows:
            return
        with self._get_connection() as conn:
            conn.executemany(
                f"""
                INSERT INTO {table} (key, payload, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
            """,
                rows,
            )
            conn.commit()

    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        table = self._table(table)
        with self._get_connection() as conn:
            row = conn.execute(
                f"SELECT payload FROM {table} WHERE key = ?", (key,)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def _select(self, table: str, where: str = "", params: Tuple = ()) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT payload FROM {table} {where} ORDER BY rowid", params
            ).fetchall()
        return [json.loads(r[0]) for r in rows]

    def get_all(self, table: str) -> List[Dict[str, Any]]:
        return self._select(self._table(table))

    def get_by_index(self, table: str, field: str, value: Any) -> List[Dict[str, Any]]:
        table = self._table(table)
        return self._select(table, f"WHERE {self._field(table, field)} = ?", (value,))

    def get_by_index_range(
        self, table: str, field: str, low: Optional[Any] = None, high: Optional[Any] = None
    ) -> List[Dict[str, Any]]:
        table = self._table(table)
        column = self._field(table, field)
        clauses = [f"{column} IS NOT NULL"]
        params: List[Any] = []
        if low is not None:
            clauses.append(f"{column} >= ?")
            params.append(low)
        if high is not None:
            clauses.append(f"{column} <= ?")
            params.append(high)
        return self._select(table, "WHERE " + " AND ".join(clauses), tuple(params))

    def count(self, table: str) -> int:
        table = self._table(table)
        with self._get_connection() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def delete(self, table: str, key: str) -> bool:
        table = self._table(table)
        with self._get_connection() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0

    def clear(self, table: str) -> None:
        table = self._table(table)
        with self._get_connection() as conn:
            conn.execute(f"DELETE FROM {table}")
            conn.commit()

    def delete_older_than(self, table: str, field: str, timestamp: Any) -> int:
        table = self._table(table)
        with self._get_connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM {table} WHERE {self._field(table, field)} < ?",
                (timestamp,),
            )
            conn.commit()
            return cursor.rowcount

    def __repr__(self) -> str:
        return f"SQLiteStore(db={self.db_path})"
