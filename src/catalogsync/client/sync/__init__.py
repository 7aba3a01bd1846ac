"""Sync operations for catalog collections.

Architecture:
    BulkFetcher → TieredCache → ChangeDetector → LocalRecordStore
                                              ↘ BatchProcessor (push)

Components:
- **BulkFetcher**: Drives the page-cursor loop of one collection
- **RetryController**: Classifies failures, backs off, persists retry state
- **ChangeDetector**: Fingerprints canonical fields and diffs fetches
- **Record kinds**: Products, variants, inventory levels, metafields
- **BatchProcessor**: Runs remote writes in audited batches
- **SyncEngine**: Orchestrates a sync pass or a push for one kind

All public symbols are re-exported here.
"""

from catalogsync.client.sync.batch import DEFAULT_BATCH_SIZE, BatchProcessor
from catalogsync.client.sync.changes import (
    CANONICAL_FIELDS,
    ChangeDetector,
    canonical_fields,
    classify,
    diff,
    fingerprint,
    normalize,
)
from catalogsync.client.sync.engine import SyncEngine, collection_cache_key
from catalogsync.client.sync.fetch import DEFAULT_MAX_ITEMS, BulkFetcher, envelope_key
from catalogsync.client.sync.kinds import (
    RECORD_KINDS,
    SYNC_ORDER,
    InventoryLevelKind,
    MetafieldKind,
    ProductKind,
    RecordKind,
    VariantKind,
    get_kind,
)
from catalogsync.client.sync.retry import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RETRIES,
    RetryController,
    RetryOutcome,
    RetryState,
    RetryStats,
    make_operation_id,
)
from catalogsync.client.sync.types import (
    BatchResult,
    ChangeSet,
    FetchError,
    FetchProgress,
    FetchResult,
    ItemResult,
    ProgressCallback,
    Record,
    SyncError,
    SyncResult,
    WriteOperation,
)

__all__ = [
    # Retry
    "DEFAULT_BASE_DELAY",
    "DEFAULT_MAX_DELAY",
    "DEFAULT_MAX_RETRIES",
    "RetryController",
    "RetryOutcome",
    "RetryState",
    "RetryStats",
    "make_operation_id",
    # Types and dataclasses
    "BatchResult",
    "ChangeSet",
    "FetchError",
    "FetchProgress",
    "FetchResult",
    "ItemResult",
    "ProgressCallback",
    "Record",
    "SyncError",
    "SyncResult",
    "WriteOperation",
    # Fetching
    "DEFAULT_MAX_ITEMS",
    "BulkFetcher",
    "envelope_key",
    # Change detection
    "CANONICAL_FIELDS",
    "ChangeDetector",
    "canonical_fields",
    "classify",
    "diff",
    "fingerprint",
    "normalize",
    # Record kinds
    "RECORD_KINDS",
    "SYNC_ORDER",
    "InventoryLevelKind",
    "MetafieldKind",
    "ProductKind",
    "RecordKind",
    "VariantKind",
    "get_kind",
    # Batches and orchestration
    "DEFAULT_BATCH_SIZE",
    "BatchProcessor",
    "SyncEngine",
    "collection_cache_key",
]
