"""Tests for the audit log."""

from __future__ import annotations

import json

import pytest

from catalogsync.client.audit import INDEX_PREFIX, RECORD_PREFIX, REPORT_PREFIX, AuditLog
from catalogsync.client.kvstore import MemoryKeyValueStore
from catalogsync.core.types import AuditEventType
from tests.fakes import FakeScheduler


@pytest.fixture
def audit(kv: MemoryKeyValueStore, scheduler: FakeScheduler) -> AuditLog:
    """Audit log over an in-memory store."""
    return AuditLog(kv, clock=scheduler.now)


class TestSession:
    """Tests for session lifecycle."""

    def test_start_session(self, audit: AuditLog, kv: MemoryKeyValueStore) -> None:
        """Starting a session records SESSION_START and an index entry."""
        session_id = audit.start_session({"operation": "sync", "kind": "products"})

        assert audit.session_id == session_id
        assert audit.records[0].event_type is AuditEventType.SESSION_START
        assert audit.records[0].data["metadata"]["kind"] == "products"
        index = json.loads(kv.get(INDEX_PREFIX + session_id))
        assert index["status"] == "active"
        assert index["record_count"] == 1

    def test_events_require_session(self, audit: AuditLog) -> None:
        """Logging before a session is started is an error."""
        with pytest.raises(RuntimeError):
            audit.log_batch_start({"name": "x"})

    def test_new_session_resets_log(self, audit: AuditLog) -> None:
        """A new session starts from an empty log and fresh counters."""
        first = audit.start_session()
        audit.log_performance("op", 1.0)
        second = audit.start_session()

        assert first != second
        assert len(audit.records) == 1
        assert audit.counters.total_operations == 0

    def test_end_session(self, audit: AuditLog, kv: MemoryKeyValueStore) -> None:
        """Ending a session records its status."""
        session_id = audit.start_session()
        audit.end_session("failed")

        assert audit.records[-1].event_type is AuditEventType.SESSION_END
        assert json.loads(kv.get(INDEX_PREFIX + session_id))["status"] == "failed"


class TestEvents:
    """Tests for event logging and counters."""

    def test_sequence_and_mirroring(self, audit: AuditLog, kv: MemoryKeyValueStore) -> None:
        """Records are numbered in order and mirrored to the store."""
        session_id = audit.start_session()
        audit.log_batch_start({"name": "apply", "size": 3})
        audit.log_batch_complete({"name": "apply"}, {"succeeded": 2, "failed": 1, "duration": 0.5})

        assert [r.sequence for r in audit.records] == [0, 1, 2]
        keys = kv.keys(f"{RECORD_PREFIX}{session_id}:")
        assert keys[-1] == f"{RECORD_PREFIX}{session_id}:000002"
        assert [r.event_type for r in audit.load_session(session_id)] == [
            AuditEventType.SESSION_START,
            AuditEventType.BATCH_START,
            AuditEventType.BATCH_COMPLETE,
        ]

    def test_batch_complete_updates_counters(self, audit: AuditLog) -> None:
        """Counters follow every logged batch outcome."""
        audit.start_session()
        audit.log_batch_complete({}, {"succeeded": 8, "failed": 2, "duration": 2.0})
        audit.log_batch_complete({}, {"succeeded": 5, "failed": 0, "duration": 1.0})

        assert audit.counters.total_operations == 15
        assert audit.counters.succeeded == 13
        assert audit.counters.failed == 2
        assert audit.counters.total_duration == 3.0
        assert audit.counters.average_duration == pytest.approx(0.2)

    def test_log_error(self, audit: AuditLog) -> None:
        """Errors carry message, context and exception type."""
        audit.start_session()
        record = audit.log_error(ValueError("bad price"), {"record_id": "5"})

        assert record.event_type is AuditEventType.ERROR
        assert record.data["message"] == "bad price"
        assert record.data["context"] == {"record_id": "5"}
        assert record.data["error_type"] == "ValueError"

    def test_log_performance(self, audit: AuditLog) -> None:
        """Pass timings are tracked apart from the operation counters."""
        audit.start_session()
        audit.log_batch_complete({"name": "apply"}, {"succeeded": 3, "failed": 0, "duration": 0.3})
        audit.log_performance("sync:products", 2.5, success=True)
        audit.log_performance("sync:variants", 1.5, success=False)

        assert audit.counters.total_operations == 3
        assert audit.counters.failed == 0
        assert audit.counters.timed_passes == 2
        assert audit.counters.timed_duration == pytest.approx(4.0)
        assert audit.generate_report().timed_duration == pytest.approx(4.0)

    def test_record_data_is_copied(self, audit: AuditLog) -> None:
        """Later changes to the logged dict do not reach the record."""
        audit.start_session()
        batch = {"name": "apply", "size": 2}
        record = audit.log_batch_start(batch)

        batch["size"] = 99
        batch["extra"] = True

        assert record.data == {"batch": {"name": "apply", "size": 2}}

    def test_records_are_immutable(self, audit: AuditLog) -> None:
        """Appended records cannot be modified."""
        audit.start_session()
        record = audit.log_batch_start({"name": "x"})
        with pytest.raises(AttributeError):
            record.sequence = 5  # type: ignore[misc]


class TestReports:
    """Tests for report generation and retrieval."""

    def test_generate_report(self, audit: AuditLog, kv: MemoryKeyValueStore) -> None:
        """The report aggregates the session and is persisted."""
        session_id = audit.start_session({"kind": "products"})
        audit.log_batch_start({"name": "apply"})
        audit.log_batch_complete({"name": "apply"}, {"succeeded": 3, "failed": 1, "duration": 1.0})
        audit.log_error("boom")
        audit.end_session()

        report = audit.generate_report()

        assert report.session_id == session_id
        assert report.status == "completed"
        assert report.batches == 1
        assert report.errors == 1
        assert report.error_messages == ["boom"]
        assert report.total_operations == 4
        assert report.success_rate == 0.75
        assert audit.load_report(session_id) == json.loads(kv.get(REPORT_PREFIX + session_id))

    def test_report_idempotent(self, audit: AuditLog) -> None:
        """Generating twice yields the same structure."""
        audit.start_session()
        audit.log_performance("op", 1.0)
        assert audit.generate_report().to_dict() == audit.generate_report().to_dict()

    def test_success_rate_without_operations(self, audit: AuditLog) -> None:
        """An empty session counts as fully successful."""
        audit.start_session()
        assert audit.generate_report().success_rate == 1.0

    def test_list_sessions_newest_first(
        self, audit: AuditLog, scheduler: FakeScheduler
    ) -> None:
        """Sessions are listed newest first."""
        first = audit.start_session()
        audit.end_session()
        scheduler.advance(60)
        second = audit.start_session()

        assert [s["session_id"] for s in audit.list_sessions()] == [second, first]

    def test_without_store(self) -> None:
        """Without a store, retrieval returns nothing."""
        audit = AuditLog()
        audit.start_session()
        assert audit.list_sessions() == []
        assert audit.load_report("x") is None


class TestConflicts:
    """Tests for overlapping-session detection."""

    def test_warns_on_other_active_session(
        self, kv: MemoryKeyValueStore, scheduler: FakeScheduler, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An unfinished session from another run is reported."""
        other = AuditLog(kv, clock=scheduler.now)
        other.start_session()

        audit = AuditLog(kv, clock=scheduler.now)
        with caplog.at_level("WARNING", logger="catalogsync"):
            assert audit.check_conflicts() is True
        assert "appear to be running" in caplog.text

    def test_finished_and_old_sessions_ignored(
        self, kv: MemoryKeyValueStore, scheduler: FakeScheduler
    ) -> None:
        """Ended sessions and sessions past the horizon do not count."""
        finished = AuditLog(kv, clock=scheduler.now)
        finished.start_session()
        finished.end_session()

        abandoned = AuditLog(kv, clock=scheduler.now)
        abandoned.start_session()
        scheduler.advance(7 * 60 * 60)

        assert AuditLog(kv, clock=scheduler.now).check_conflicts() is False

    def test_own_session_ignored(self, audit: AuditLog) -> None:
        """The current session never conflicts with itself."""
        audit.start_session()
        assert audit.count_active_sessions() == 0
