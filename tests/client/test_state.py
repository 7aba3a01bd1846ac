"""Tests for the local record store."""

from collections.abc import Iterator
from pathlib import Path

import pytest

from catalogsync.client.kvstore import SQLiteKeyValueStore
from catalogsync.client.state import LocalRecordStore


@pytest.fixture
def store(tmp_path: Path) -> Iterator[LocalRecordStore]:
    """Record store in a temporary database."""
    store = LocalRecordStore(tmp_path / "state.db")
    yield store
    store.close()


class TestRecords:
    """Tests for record operations."""

    def test_upsert_and_get(self, store: LocalRecordStore) -> None:
        """A stored record round-trips with its fingerprint."""
        store.upsert("products", "1", "abc", {"key": "1", "title": "Hat"})

        record = store.get("products", "1")

        assert record is not None
        assert record.fingerprint == "abc"
        assert record.data["title"] == "Hat"
        assert record.synced_at > 0

    def test_upsert_replaces(self, store: LocalRecordStore) -> None:
        """Upserting the same id replaces the row."""
        store.upsert("products", "1", "abc", {"title": "Hat"})
        store.upsert("products", "1", "def", {"title": "Cap"})

        assert store.count("products") == 1
        assert store.get_fingerprints("products") == {"1": "def"}

    def test_kinds_are_separate(self, store: LocalRecordStore) -> None:
        """The same id under two kinds is two records."""
        store.upsert("products", "1", "a", {})
        store.upsert("variants", "1", "b", {})

        assert store.count() == 2
        assert store.get_fingerprints("variants") == {"1": "b"}
        assert store.get("metafields", "1") is None

    def test_list_and_remove(self, store: LocalRecordStore) -> None:
        """Records are listed by id and can be removed."""
        for record_id in ("2", "1", "3"):
            store.upsert("products", record_id, "x", {})
        store.remove("products", "2")

        assert [r.record_id for r in store.list_records("products")] == ["1", "3"]


class TestSyncState:
    """Tests for sync state values."""

    def test_last_import_per_kind(self, store: LocalRecordStore) -> None:
        """Each kind tracks its own last import time."""
        assert store.get_last_import_at("products") is None

        store.set_last_import_at("products", "2024-05-01T00:00:00+00:00")

        assert store.get_last_import_at("products") == "2024-05-01T00:00:00+00:00"
        assert store.get_last_import_at("variants") is None

    def test_persists_across_connections(self, tmp_path: Path) -> None:
        """State survives reopening the database."""
        path = tmp_path / "state.db"
        first = LocalRecordStore(path)
        first.upsert("products", "1", "abc", {"title": "Hat"})
        first.set_state("cursor", "42")
        first.close()

        second = LocalRecordStore(path)
        try:
            assert second.get_fingerprints("products") == {"1": "abc"}
            assert second.get_state("cursor") == "42"
        finally:
            second.close()

    def test_shares_file_with_kv_store(self, tmp_path: Path) -> None:
        """Records and key-value data can live in one file."""
        path = tmp_path / "state.db"
        store = LocalRecordStore(path)
        kv = SQLiteKeyValueStore(path)
        try:
            store.upsert("products", "1", "abc", {})
            kv.set("cache:x", "1")
            assert kv.keys("cache:") == ["cache:x"]
            assert store.count() == 1
        finally:
            kv.close()
            store.close()
