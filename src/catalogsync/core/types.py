"""Shared types for catalogsync.

This module defines enums used across the sync core.
"""

from __future__ import annotations

from enum import Enum


class ChangeKind(str, Enum):
    """Classification of a fetched record against its stored fingerprint."""

    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    REMOVED = "removed"


class ErrorCategory(str, Enum):
    """Category of a failed remote call, as decided by the retry policy."""

    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    SERVER = "server"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


class AuditEventType(str, Enum):
    """Types of audit log records."""

    SESSION_START = "session_start"
    BATCH_START = "batch_start"
    BATCH_COMPLETE = "batch_complete"
    ERROR = "error"
    PERFORMANCE = "performance"
    SESSION_END = "session_end"
