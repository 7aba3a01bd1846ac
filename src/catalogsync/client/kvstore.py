"""Durable key-value storage used by the cache, retry state and audit log.

This module provides:
- KeyValueStore: protocol over a flat string -> string namespace
- SQLiteKeyValueStore: persistent implementation (survives restarts)
- MemoryKeyValueStore: volatile implementation for tests and dry runs

The namespace has no transactions and no range queries. keys() is a full
scan filtered by prefix and should only be used by cleanup routines.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Protocol


class KeyValueStore(Protocol):
    """Flat string key-value namespace."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class MemoryKeyValueStore:
    """In-memory key-value store."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self.reads = 0
        self.writes = 0

    def get(self, key: str) -> str | None:
        self.reads += 1
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self.writes += 1
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)


class SQLiteKeyValueStore:
    """SQLite-backed key-value store.

    Can share a database file with LocalRecordStore; it only touches the
    kv_store table.
    """

    def __init__(self, db_path: Path) -> None:
        """Open (or create) the store.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            str(self._db_path),
            isolation_level=None,  # Autocommit mode
        )
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS kv_store (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def get(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM kv_store WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
            (key, value),
        )

    def delete(self, key: str) -> None:
        self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    def keys(self, prefix: str = "") -> list[str]:
        rows = self._conn.execute(
            "SELECT key FROM kv_store WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ).fetchall()
        return [row[0] for row in rows]
