"""Local record store for synced catalog data.

This module provides:
- LocalRecordStore: SQLite-based store of synced records and their fingerprints
- StoredRecord: Represents one synced record

Architecture:
    Each row is the tabular rendering of one remote record (as produced by
    its RecordKind) plus the fingerprint of its canonical fields. Change
    detection compares fresh fetches against these fingerprints; the sheet
    adapter reads the rows.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class StoredRecord:
    """A record stored after a sync.

    Attributes:
        kind: Record kind (products, variants, ...).
        record_id: Key of the record within its kind.
        fingerprint: Fingerprint of its canonical fields when stored.
        data: Tabular row.
        synced_at: Timestamp when the record was stored.
    """

    kind: str
    record_id: str
    fingerprint: str
    data: dict[str, Any]
    synced_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> StoredRecord:
        """Create StoredRecord from database row."""
        return cls(
            kind=row["kind"],
            record_id=row["record_id"],
            fingerprint=row["fingerprint"],
            data=json.loads(row["data"]) if row["data"] else {},
            synced_at=row["synced_at"],
        )


class LocalRecordStore:
    """SQLite-based store of synced records."""

    def __init__(self, db_path: Path) -> None:
        """Initialize local store database.

        Args:
            db_path: Path to SQLite database file.
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            str(self._db_path),
            isolation_level=None,  # Autocommit mode
        )
        self._conn.row_factory = sqlite3.Row

        # Enable WAL mode so the key-value store can share the file
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._create_tables()

    def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS records (
                kind TEXT NOT NULL,
                record_id TEXT NOT NULL,
                fingerprint TEXT NOT NULL,
                data TEXT,
                synced_at REAL NOT NULL,
                PRIMARY KEY (kind, record_id)
            );

            -- Key-value sync state
            CREATE TABLE IF NOT EXISTS sync_state (
                key TEXT PRIMARY KEY,
                value TEXT
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    # === Record operations ===

    def get(self, kind: str, record_id: str) -> StoredRecord | None:
        """Get one stored record."""
        row = self._conn.execute(
            "SELECT * FROM records WHERE kind = ? AND record_id = ?",
            (kind, record_id),
        ).fetchone()
        return StoredRecord.from_row(row) if row else None

    def list_records(self, kind: str) -> list[StoredRecord]:
        """List stored records of a kind, ordered by id."""
        rows = self._conn.execute(
            "SELECT * FROM records WHERE kind = ? ORDER BY record_id",
            (kind,),
        ).fetchall()
        return [StoredRecord.from_row(row) for row in rows]

    def get_fingerprints(self, kind: str) -> dict[str, str]:
        """Stored fingerprints of a kind, keyed by record id."""
        rows = self._conn.execute(
            "SELECT record_id, fingerprint FROM records WHERE kind = ?",
            (kind,),
        ).fetchall()
        return {row["record_id"]: row["fingerprint"] for row in rows}

    def upsert(
        self,
        kind: str,
        record_id: str,
        fingerprint: str,
        data: dict[str, Any],
    ) -> None:
        """Insert or replace a record."""
        self._conn.execute(
            """
            INSERT OR REPLACE INTO records (kind, record_id, fingerprint, data, synced_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (kind, record_id, fingerprint, json.dumps(data, default=str), time.time()),
        )

    def remove(self, kind: str, record_id: str) -> None:
        """Remove a record."""
        self._conn.execute(
            "DELETE FROM records WHERE kind = ? AND record_id = ?",
            (kind, record_id),
        )

    def count(self, kind: str | None = None) -> int:
        """Count stored records (of one kind or all)."""
        if kind is None:
            row = self._conn.execute("SELECT COUNT(*) FROM records").fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM records WHERE kind = ?", (kind,)
            ).fetchone()
        return int(row[0])

    # === Sync state ===

    def get_state(self, key: str) -> str | None:
        """Get a sync state value."""
        row = self._conn.execute(
            "SELECT value FROM sync_state WHERE key = ?",
            (key,),
        ).fetchone()
        return row["value"] if row else None

    def set_state(self, key: str, value: str) -> None:
        """Set a sync state value."""
        self._conn.execute(
            "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
            (key, value),
        )

    def get_last_import_at(self, kind: str) -> str | None:
        """Get the ISO timestamp of the last successful import of a kind."""
        return self.get_state(f"last_import_at:{kind}")

    def set_last_import_at(self, kind: str, timestamp: str) -> None:
        """Set the ISO timestamp of the last successful import of a kind."""
        self.set_state(f"last_import_at:{kind}", timestamp)
