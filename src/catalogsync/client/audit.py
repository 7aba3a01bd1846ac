"""Session-scoped audit log for sync and export batches.

This module provides:
- AuditLog: append-only event log mirrored to the durable store
- AuditRecord: one immutable event
- PerformanceCounters: incrementally maintained operation counters
- SessionReport: aggregated summary of a session

Storage layout:
    audit:<session_id>:<sequence>   one record (JSON)
    audit_index:<session_id>        session index entry (JSON)
    audit_report:<session_id>       last generated report (JSON)
"""

from __future__ import annotations

import copy
import json
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from catalogsync.client.kvstore import KeyValueStore
from catalogsync.core.types import AuditEventType

logger = logging.getLogger(__name__)

RECORD_PREFIX = "audit:"
INDEX_PREFIX = "audit_index:"
REPORT_PREFIX = "audit_report:"

STATUS_ACTIVE = "active"

# Sessions older than this no longer count as running
DEFAULT_ACTIVE_HORIZON = 6 * 60 * 60  # seconds


@dataclass(frozen=True)
class AuditRecord:
    """One audit event. Never mutated once appended."""

    session_id: str
    sequence: int
    event_type: AuditEventType
    timestamp: float
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["event_type"] = self.event_type.value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditRecord:
        return cls(
            session_id=data["session_id"],
            sequence=int(data["sequence"]),
            event_type=AuditEventType(data["event_type"]),
            timestamp=float(data["timestamp"]),
            data=dict(data.get("data") or {}),
        )


@dataclass
class PerformanceCounters:
    """Operation counters, updated on every logged outcome."""

    total_operations: int = 0
    succeeded: int = 0
    failed: int = 0
    total_duration: float = 0.0
    # Whole-pass timings, kept apart from the per-operation counts
    timed_passes: int = 0
    timed_duration: float = 0.0

    @property
    def average_duration(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return self.total_duration / self.total_operations

    def record(self, succeeded: int, failed: int, duration: float) -> None:
        self.total_operations += succeeded + failed
        self.succeeded += succeeded
        self.failed += failed
        self.total_duration += duration

    def record_timing(self, duration: float) -> None:
        self.timed_passes += 1
        self.timed_duration += duration


@dataclass
class SessionReport:
    """Aggregated summary of one session."""

    session_id: str
    status: str
    started_at: float
    ended_at: float | None
    metadata: dict[str, Any]
    batches: int
    errors: int
    record_count: int
    total_operations: int
    succeeded: int
    failed: int
    total_duration: float
    average_duration: float
    error_messages: list[str] = field(default_factory=list)
    timed_duration: float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_operations == 0:
            return 1.0
        return self.succeeded / self.total_operations

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["success_rate"] = self.success_rate
        return result


class AuditLog:
    """Append-only audit log for one session at a time."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the audit log.

        Args:
            store: Durable store records are mirrored to (None keeps them in memory).
            clock: Time source in seconds.
        """
        self._store = store
        self._clock = clock
        self.session_id: str | None = None
        self._records: list[AuditRecord] = []
        self._metadata: dict[str, Any] = {}
        self._started_at = 0.0
        self._ended_at: float | None = None
        self._status = STATUS_ACTIVE
        self.counters = PerformanceCounters()

    @property
    def records(self) -> tuple[AuditRecord, ...]:
        """Records of the current session, in append order."""
        return tuple(self._records)

    # === Session lifecycle ===

    def start_session(self, metadata: dict[str, Any] | None = None) -> str:
        """Start a new session, discarding the in-memory log of the previous one.

        Returns:
            The new session id.
        """
        stamp = time.strftime("%Y%m%d%H%M%S", time.gmtime(self._clock()))
        self.session_id = f"{stamp}-{uuid.uuid4().hex[:8]}"
        self._records = []
        self._metadata = dict(metadata or {})
        self._started_at = self._clock()
        self._ended_at = None
        self._status = STATUS_ACTIVE
        self.counters = PerformanceCounters()

        self._append(AuditEventType.SESSION_START, {"metadata": self._metadata})
        logger.info(f"Audit session {self.session_id} started")
        return self.session_id

    def end_session(self, status: str = "completed") -> None:
        """Mark the current session as finished."""
        self._require_session()
        self._status = status
        self._ended_at = self._clock()
        self._append(AuditEventType.SESSION_END, {"status": status})
        logger.info(f"Audit session {self.session_id} ended ({status})")

    # === Events ===

    def log_batch_start(self, batch_info: dict[str, Any]) -> AuditRecord:
        """Record the start of a batch."""
        return self._append(AuditEventType.BATCH_START, {"batch": batch_info})

    def log_batch_complete(
        self,
        batch_info: dict[str, Any],
        results: dict[str, Any],
    ) -> AuditRecord:
        """Record the outcome of a batch and update counters.

        Args:
            batch_info: Batch description (name, size, ...).
            results: Must contain "succeeded", "failed" and "duration".
        """
        succeeded = int(results.get("succeeded", 0))
        failed = int(results.get("failed", 0))
        duration = float(results.get("duration", 0.0))
        self.counters.record(succeeded, failed, duration)
        return self._append(
            AuditEventType.BATCH_COMPLETE, {"batch": batch_info, "results": results}
        )

    def log_error(
        self, error: BaseException | str, context: dict[str, Any] | None = None
    ) -> AuditRecord:
        """Record an error with optional context."""
        message = str(error)
        data: dict[str, Any] = {"message": message, "context": context or {}}
        if isinstance(error, BaseException):
            data["error_type"] = type(error).__name__
        logger.debug(f"Audit error: {message}")
        return self._append(AuditEventType.ERROR, data)

    def log_performance(self, operation: str, duration: float, success: bool = True) -> AuditRecord:
        """Record the timing of a whole operation.

        Operation counts come from batch outcomes; a timing does not add to them.
        """
        self.counters.record_timing(duration)
        return self._append(
            AuditEventType.PERFORMANCE,
            {"operation": operation, "duration": duration, "success": success},
        )

    # === Reports ===

    def generate_report(self) -> SessionReport:
        """Aggregate the current session and persist the report.

        Calling it repeatedly on the same log yields the same structure.
        """
        self._require_session()
        assert self.session_id is not None
        errors = [r for r in self._records if r.event_type is AuditEventType.ERROR]
        report = SessionReport(
            session_id=self.session_id,
            status=self._status,
            started_at=self._started_at,
            ended_at=self._ended_at,
            metadata=dict(self._metadata),
            batches=sum(1 for r in self._records if r.event_type is AuditEventType.BATCH_COMPLETE),
            errors=len(errors),
            record_count=len(self._records),
            total_operations=self.counters.total_operations,
            succeeded=self.counters.succeeded,
            failed=self.counters.failed,
            total_duration=self.counters.total_duration,
            average_duration=self.counters.average_duration,
            error_messages=[str(r.data.get("message", "")) for r in errors],
            timed_duration=self.counters.timed_duration,
        )
        if self._store is not None:
            self._store.set(REPORT_PREFIX + self.session_id, json.dumps(report.to_dict()))
        return report

    # === Retrieval ===

    def list_sessions(self) -> list[dict[str, Any]]:
        """Index entries of every persisted session (full scan), newest first."""
        if self._store is None:
            return []
        sessions = []
        for key in self._store.keys(INDEX_PREFIX):
            raw = self._store.get(key)
            if raw is None:
                continue
            try:
                sessions.append(json.loads(raw))
            except ValueError:
                logger.warning(f"Skipping unreadable audit index {key}")
        return sorted(sessions, key=lambda s: s.get("started_at", 0), reverse=True)

    def load_session(self, session_id: str) -> list[AuditRecord]:
        """Load the persisted records of a session, in order."""
        if self._store is None:
            return []
        records = []
        for key in self._store.keys(f"{RECORD_PREFIX}{session_id}:"):
            raw = self._store.get(key)
            if raw is not None:
                records.append(AuditRecord.from_dict(json.loads(raw)))
        return sorted(records, key=lambda r: r.sequence)

    def load_report(self, session_id: str) -> dict[str, Any] | None:
        """Load the last persisted report of a session."""
        if self._store is None:
            return None
        raw = self._store.get(REPORT_PREFIX + session_id)
        return json.loads(raw) if raw else None

    def count_active_sessions(self, max_age: float = DEFAULT_ACTIVE_HORIZON) -> int:
        """Count other sessions still marked active and younger than max_age."""
        now = self._clock()
        return sum(
            1
            for s in self.list_sessions()
            if s.get("status") == STATUS_ACTIVE
            and s.get("session_id") != self.session_id
            and now - float(s.get("started_at", 0)) <= max_age
        )

    def check_conflicts(self, max_age: float = DEFAULT_ACTIVE_HORIZON) -> bool:
        """Warn if another pass appears to be running.

        This only detects overlap through persisted state; it does not
        prevent two passes from racing.

        Returns:
            True if another active session was found.
        """
        active = self.count_active_sessions(max_age)
        if active:
            logger.warning(
                f"{active} other sync session(s) appear to be running; "
                f"results may interleave"
            )
        return active > 0

    # === Internals ===

    def _require_session(self) -> None:
        if self.session_id is None:
            raise RuntimeError("No audit session started")

    def _append(self, event_type: AuditEventType, data: dict[str, Any]) -> AuditRecord:
        self._require_session()
        assert self.session_id is not None
        record = AuditRecord(
            session_id=self.session_id,
            sequence=len(self._records),
            event_type=event_type,
            timestamp=self._clock(),
            data=copy.deepcopy(data),
        )
        self._records.append(record)
        if self._store is not None:
            self._store.set(
                f"{RECORD_PREFIX}{self.session_id}:{record.sequence:06d}",
                json.dumps(record.to_dict(), default=str),
            )
            self._store.set(
                INDEX_PREFIX + self.session_id,
                json.dumps(
                    {
                        "session_id": self.session_id,
                        "started_at": self._started_at,
                        "ended_at": self._ended_at,
                        "status": self._status,
                        "record_count": len(self._records),
                        "metadata": self._metadata,
                    },
                    default=str,
                ),
            )
        return record
