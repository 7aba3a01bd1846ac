"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, FetchError: Exception classes
- FetchProgress: Progress event emitted during paginated fetches
- FetchResult: Result of a complete collection fetch
- ChangeSet: Result of a diff pass
- WriteOperation, ItemResult, BatchResult: Batched remote writes
- SyncResult: Overall sync pass result
- Type aliases for callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from catalogsync.client.errors import GatewayError

Record = dict[str, Any]


class SyncError(Exception):
    """Base exception for sync errors."""


class FetchError(SyncError):
    """A paginated fetch was aborted.

    Attributes:
        resource_type: Collection being fetched.
        partial_count: Items fetched before the failure.
        attempts: Attempts spent on the failing page.
        error: Underlying gateway error.
    """

    def __init__(
        self,
        resource_type: str,
        partial_count: int,
        attempts: int,
        error: GatewayError | None,
    ) -> None:
        self.resource_type = resource_type
        self.partial_count = partial_count
        self.attempts = attempts
        self.error = error
        super().__init__(
            f"Fetching {resource_type} failed after {partial_count} items "
            f"({attempts} attempts): {error}"
        )


@dataclass(frozen=True)
class FetchProgress:
    """Progress information for a paginated fetch."""

    resource_type: str
    item_count: int
    page: int
    elapsed_time: float

    @property
    def items_per_second(self) -> float:
        """Throughput so far."""
        if self.elapsed_time <= 0:
            return 0.0
        return self.item_count / self.elapsed_time


# Type alias for progress callback
ProgressCallback = Callable[[FetchProgress], None]


@dataclass
class FetchResult:
    """Result of fetching a whole collection.

    Attributes:
        items: All fetched items, in cursor order.
        count: Number of items.
        elapsed_time: Seconds spent fetching (including pacing).
        pages: Number of page requests made.
        truncated: True if the safety ceiling stopped pagination early.
        fetched_at: Scheduler time at which the first page was requested.
    """

    items: list[Record]
    count: int
    elapsed_time: float
    pages: int = 0
    truncated: bool = False
    fetched_at: float | None = None


@dataclass
class ChangeSet:
    """Result of diffing a fresh fetch against stored fingerprints."""

    to_add: list[Record] = field(default_factory=list)
    to_update: list[Record] = field(default_factory=list)
    to_delete: list[Record] = field(default_factory=list)
    unchanged: list[Record] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        """Check if anything needs to be applied."""
        return bool(self.to_add or self.to_update or self.to_delete)

    def summary(self) -> dict[str, int]:
        """Counts per bucket."""
        return {
            "added": len(self.to_add),
            "updated": len(self.to_update),
            "deleted": len(self.to_delete),
            "unchanged": len(self.unchanged),
        }


@dataclass(frozen=True)
class WriteOperation:
    """One remote write request."""

    endpoint: str
    method: str = "POST"
    payload: dict[str, Any] | None = None
    record_id: str | None = None


@dataclass
class ItemResult:
    """Outcome of one operation within a batch."""

    operation: WriteOperation
    success: bool
    attempts: int
    data: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class BatchResult:
    """Outcome of a batched set of operations.

    Items fail independently; the batch as a whole is successful only
    when every item succeeded.
    """

    items: list[ItemResult] = field(default_factory=list)
    duration: float = 0.0

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.success)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if not item.success)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def errors(self) -> list[str]:
        return [item.error for item in self.items if item.error]


@dataclass
class SyncResult:
    """Result of a sync pass for one record kind."""

    kind: str
    success: bool
    errors: list[str] = field(default_factory=list)
    changes: ChangeSet | None = None
    fetched: int = 0
    applied: int = 0
    duration: float = 0.0
    session_id: str | None = None
    from_cache: bool = False
    truncated: bool = False
