"""Sync pass orchestration.

A sync pass for one record kind:
    1. warn if another pass seems to be running (audit index)
    2. fetch the remote collection through the tiered cache
    3. diff it against stored fingerprints
    4. apply only the delta to the local record store, as one audited batch
    5. record performance and persist the session report

Every remote call runs through the retry controller. A pass never raises:
failures are logged, audited and returned in SyncResult.errors.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from catalogsync.client.api import ShopClient
from catalogsync.client.audit import AuditLog
from catalogsync.client.cache import TieredCache
from catalogsync.client.kvstore import SQLiteKeyValueStore
from catalogsync.client.pacing import RequestPacer, Scheduler, SystemScheduler
from catalogsync.client.state import LocalRecordStore
from catalogsync.client.sync.batch import BatchProcessor
from catalogsync.client.sync.changes import ChangeDetector
from catalogsync.client.sync.fetch import BulkFetcher
from catalogsync.client.sync.kinds import SHARED_COLLECTIONS, SYNC_ORDER, RecordKind, get_kind
from catalogsync.client.sync.retry import RetryController
from catalogsync.client.sync.types import (
    BatchResult,
    ChangeSet,
    FetchError,
    FetchResult,
    ItemResult,
    ProgressCallback,
    Record,
    SyncResult,
    WriteOperation,
)
from catalogsync.core.config import ShopConfig, SyncSettings
from catalogsync.core.types import ChangeKind

logger = logging.getLogger(__name__)

READ_ONLY_ERROR = "Read-only mode is enabled; push operations are disabled"

COLLECTION_CACHE_PREFIX = "collection:"


def collection_cache_key(kind: str, filters: Mapping[str, Any] | None) -> str:
    """Cache key of a fetched collection."""
    return f"{COLLECTION_CACHE_PREFIX}{kind}:{json.dumps(dict(filters or {}), sort_keys=True)}"


def _response_object(data: Mapping[str, Any] | None) -> dict[str, Any]:
    """Unwrap a single-object response envelope ({"product": {...}})."""
    if data and len(data) == 1:
        value = next(iter(data.values()))
        if isinstance(value, dict):
            return value
    return {}


class SyncEngine:
    """Runs sync passes and pushes for record kinds."""

    def __init__(
        self,
        client: ShopClient,
        retry: RetryController,
        fetcher: BulkFetcher,
        cache: TieredCache,
        store: LocalRecordStore,
        audit: AuditLog,
        settings: SyncSettings | None = None,
        *,
        batch: BatchProcessor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.retry = retry
        self.fetcher = fetcher
        self.cache = cache
        self.store = store
        self.audit = audit
        self.settings = settings or SyncSettings()
        self.batch = batch or BatchProcessor(
            client, retry, audit, batch_size=self.settings.max_batch_size
        )
        self._clock = clock
        self._closeables: list[Any] = []

    @classmethod
    def create(
        cls,
        config: ShopConfig,
        db_path: Path,
        settings: SyncSettings | None = None,
        *,
        scheduler: Scheduler | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SyncEngine:
        """Wire a complete engine backed by one SQLite file.

        Args:
            config: Shop connection configuration.
            db_path: SQLite file for records, cache, retry state and audit log.
            settings: Sync tunables (defaults if None).
            scheduler: Scheduler for pacing and backoff.
            on_progress: Fetch progress callback.
        """
        settings = settings or SyncSettings()
        scheduler = scheduler or SystemScheduler()
        kv = SQLiteKeyValueStore(db_path)
        store = LocalRecordStore(db_path)
        client = ShopClient(config, RequestPacer(settings.rate_limit_delay, scheduler))
        retry = RetryController.from_settings(settings, kv, scheduler)
        fetcher = BulkFetcher.from_settings(
            client, retry, settings, scheduler=scheduler, on_progress=on_progress
        )
        cache = TieredCache(
            kv,
            max_entries=settings.max_cache_entries,
            default_ttl_minutes=settings.cache_ttl_minutes,
            compression_threshold=settings.compression_threshold,
            clock=scheduler.now,
        )
        audit = AuditLog(kv, clock=scheduler.now)
        engine = cls(client, retry, fetcher, cache, store, audit, settings)
        engine._closeables = [client, store, kv]
        return engine

    def close(self) -> None:
        """Close resources opened by create()."""
        for resource in self._closeables:
            resource.close()
        self._closeables = []

    def __enter__(self) -> SyncEngine:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # === Connection ===

    def test_connection(self) -> dict[str, Any]:
        """Check credentials by fetching shop information."""
        outcome = self.retry.execute_with_retry(
            lambda: self.client.request("shop.json"), endpoint="shop.json"
        )
        if outcome.success and outcome.data is not None:
            shop = outcome.data.data.get("shop", {})
            logger.info(f"Connected to: {shop.get('name')} ({shop.get('domain')})")
            return {"success": True, "shop": shop}
        logger.error(f"Connection failed: {outcome.error_message}")
        return {"success": False, "error": outcome.error_message}

    # === Sync ===

    def sync(
        self,
        kind_name: str,
        *,
        incremental: bool = False,
        force_refresh: bool = False,
    ) -> SyncResult:
        """Run one sync pass for a record kind.

        Args:
            kind_name: Record kind to sync.
            incremental: Only fetch records updated since the last import
                (deletions are not detected in this mode).
            force_refresh: Bypass cached collections.

        Returns:
            SyncResult with explicit success and errors.
        """
        started = self._clock()
        result = SyncResult(kind=kind_name, success=False)

        try:
            kind = get_kind(kind_name)
        except KeyError as e:
            result.errors.append(str(e.args[0]))
            logger.error(result.errors[-1])
            return result

        self.audit.check_conflicts()
        result.session_id = self.audit.start_session(
            {"operation": "sync", "kind": kind_name, "incremental": incremental}
        )
        imported_at = datetime.now(UTC).isoformat()
        fetched: FetchResult | None = None

        try:
            filters: dict[str, Any] = {}
            last_import = self.store.get_last_import_at(kind_name) if incremental else None
            if last_import:
                filters["updated_at_min"] = last_import
            elif incremental:
                logger.info(f"No previous import of {kind_name}; running full sync")

            fetched, result.from_cache = self._fetch(kind, filters, force_refresh)
            result.fetched = fetched.count
            result.truncated = fetched.truncated

            detector = ChangeDetector(kind.name, kind.target_key)
            prepared = [kind.prepare(item) for item in fetched.items]
            changes = detector.diff(
                prepared,
                self.store.get_fingerprints(kind.name),
                detect_deletions=not filters and not fetched.truncated,
            )
            result.changes = changes

            applied, errors = self._apply(kind, changes)
            result.applied = applied
            result.errors.extend(errors)
            result.success = not errors
        except FetchError as e:
            logger.error(f"Sync of {kind_name} aborted: {e}")
            self.audit.log_error(e, {"kind": kind_name, "partial_count": e.partial_count})
            result.errors.append(str(e))
        except Exception as e:
            logger.exception(f"Sync of {kind_name} failed unexpectedly")
            self.audit.log_error(e, {"kind": kind_name})
            result.errors.append(f"{type(e).__name__}: {e}")

        result.duration = self._clock() - started
        if result.success:
            # Cached collections carry the time they were actually fetched
            if fetched is not None and fetched.fetched_at is not None:
                imported_at = datetime.fromtimestamp(fetched.fetched_at, UTC).isoformat()
            self.store.set_last_import_at(kind_name, imported_at)

        self._finish_session(f"sync:{kind_name}", result.duration, result.success)
        logger.info(
            f"Sync of {kind_name} {'completed' if result.success else 'failed'} "
            f"in {result.duration:.1f}s: "
            f"{result.changes.summary() if result.changes else result.errors}"
        )
        return result

    def sync_all(
        self,
        kinds: Sequence[str] | None = None,
        *,
        incremental: bool = False,
        force_refresh: bool = False,
    ) -> dict[str, SyncResult]:
        """Sync several kinds in dependency order."""
        selected = list(kinds) if kinds else list(SYNC_ORDER)
        ordered = [k for k in SYNC_ORDER if k in selected]
        ordered += [k for k in selected if k not in SYNC_ORDER]
        return {
            name: self.sync(name, incremental=incremental, force_refresh=force_refresh)
            for name in ordered
        }

    def _fetch(
        self, kind: RecordKind, filters: dict[str, Any], force_refresh: bool
    ) -> tuple[FetchResult, bool]:
        """Fetch a collection through the cache.

        Returns:
            (result, served_from_cache)
        """
        computed = False

        def compute() -> dict[str, Any]:
            nonlocal computed
            computed = True
            return asdict(kind.fetch(self.fetcher, filters or None))

        cached = self.cache.get(
            collection_cache_key(kind.name, filters),
            compute,
            ttl_minutes=self.settings.cache_ttl_minutes,
            force_refresh=force_refresh,
        )
        return FetchResult(**cached), not computed

    def _apply(self, kind: RecordKind, changes: ChangeSet) -> tuple[int, list[str]]:
        """Apply a change set to the local store as one audited batch.

        Each record is applied on its own; a failing record does not stop
        the others.

        Returns:
            (records applied, error messages)
        """
        batch_info = {
            "name": f"apply:{kind.name}",
            "size": len(changes.to_add) + len(changes.to_update) + len(changes.to_delete),
        }
        self.audit.log_batch_start(batch_info)
        started = self._clock()
        applied = 0
        errors: list[str] = []

        for record in [*changes.to_add, *changes.to_update]:
            try:
                row = kind.transform(record)
                self.store.upsert(kind.name, row["key"], row["_hash"], row)
                applied += 1
            except Exception as e:
                message = f"Failed to store {kind.name} record {record.get('id')}: {e}"
                logger.warning(message)
                self.audit.log_error(message, {"kind": kind.name})
                errors.append(message)

        for stub in changes.to_delete:
            self.store.remove(kind.name, str(stub["id"]))
            applied += 1

        self.audit.log_batch_complete(
            batch_info,
            {
                "succeeded": applied,
                "failed": len(errors),
                "duration": self._clock() - started,
                **changes.summary(),
            },
        )
        return applied, errors

    # === Push ===

    def push(self, kind_name: str, records: Iterable[Mapping[str, Any]]) -> BatchResult:
        """Write locally edited records back to the remote API.

        Only records whose fingerprint differs from the stored one are sent;
        records without a stored fingerprint are created. Each successful
        write refreshes the stored row.

        Returns:
            BatchResult with one item per write attempted.
        """
        kind = get_kind(kind_name)
        stored = self.store.get_fingerprints(kind.name)

        detector = ChangeDetector(kind.name, kind.target_key)
        pending: list[tuple[Record, WriteOperation]] = []
        rejected: list[ItemResult] = []
        for raw in records:
            record = kind.prepare(raw)
            try:
                status = detector.classify(record, stored.get(kind.target_key(record)))
            except KeyError:
                # No identifier yet: a new record
                status = ChangeKind.NEW
            if status is ChangeKind.UNCHANGED:
                continue
            is_update = status is ChangeKind.UPDATED
            try:
                operation = kind.write_operation(record, is_update=is_update)
            except KeyError as e:
                rejected.append(self._reject(kind, record, is_update, e))
                continue
            pending.append((record, operation))

        if self.settings.read_only:
            logger.error(READ_ONLY_ERROR)
            return BatchResult(
                items=rejected
                + [
                    ItemResult(operation=op, success=False, attempts=0, error=READ_ONLY_ERROR)
                    for _, op in pending
                ]
            )

        self.audit.check_conflicts()
        self.audit.start_session(
            {"operation": "push", "kind": kind_name, "size": len(pending) + len(rejected)}
        )
        if rejected:
            self._audit_rejected(kind_name, rejected)
        result = self.batch.process([op for _, op in pending], name=f"push:{kind_name}")

        for (record, _), item in zip(pending, result.items, strict=True):
            if not item.success:
                continue
            saved = kind.prepare({**record, **_response_object(item.data)})
            try:
                row = kind.transform(saved)
            except KeyError:
                logger.warning(f"Pushed {kind_name} record has no id; not stored locally")
                continue
            self.store.upsert(kind.name, row["key"], row["_hash"], row)

        if result.succeeded:
            self.invalidate_collections(kind.name)
        result.items[:0] = rejected

        self._finish_session(f"push:{kind_name}", result.duration, result.success)
        logger.info(
            f"Pushed {kind_name}: {result.succeeded} succeeded, {result.failed} failed"
        )
        return result

    def invalidate_collections(self, kind_name: str) -> int:
        """Drop cached collections made stale by writes to a kind.

        Returns:
            Number of cache entries removed.
        """
        removed = 0
        for name in SHARED_COLLECTIONS.get(kind_name, (kind_name,)):
            removed += self.cache.delete_prefix(f"{COLLECTION_CACHE_PREFIX}{name}:")
        logger.debug(f"Invalidated {removed} cached collections after writing {kind_name}")
        return removed

    # === Internals ===

    def _reject(
        self, kind: RecordKind, record: Mapping[str, Any], is_update: bool, error: KeyError
    ) -> ItemResult:
        """Failed item for a record that cannot be turned into a write."""
        message = f"Cannot write {kind.name} record: missing field {error.args[0]!r}"
        logger.warning(message)
        return ItemResult(
            operation=WriteOperation(
                endpoint=kind.name,
                method="PUT" if is_update else "POST",
                payload=dict(record),
                record_id=str(record.get("id", "")) or None,
            ),
            success=False,
            attempts=0,
            error=message,
        )

    def _audit_rejected(self, kind_name: str, rejected: list[ItemResult]) -> None:
        batch_info = {"name": f"reject:{kind_name}", "size": len(rejected)}
        self.audit.log_batch_start(batch_info)
        for item in rejected:
            self.audit.log_error(
                item.error or "", {"kind": kind_name, "method": item.operation.method}
            )
        self.audit.log_batch_complete(
            batch_info, {"succeeded": 0, "failed": len(rejected), "duration": 0.0}
        )

    def _finish_session(self, operation: str, duration: float, success: bool) -> None:
        self.audit.log_performance(operation, duration, success)
        self.audit.end_session("completed" if success else "failed")
        self.audit.generate_report()
        if self.settings.purge_cache_on_finish:
            self.cache.purge_expired()
