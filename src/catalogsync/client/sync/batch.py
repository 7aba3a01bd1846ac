"""Batched remote writes with per-item outcomes.

This module provides:
- BatchProcessor: runs write operations in audited batches

A failing item never aborts its batch: every operation runs through the
retry controller and its outcome is recorded on its own. The batch is
reported successful or not from the aggregate counts.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from catalogsync.client.sync.types import BatchResult, ItemResult, WriteOperation

if TYPE_CHECKING:
    from catalogsync.client.api import ShopClient
    from catalogsync.client.audit import AuditLog
    from catalogsync.client.sync.retry import RetryController

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 250

# Callback invoked after each batch with (processed, total)
BatchProgressCallback = Callable[[int, int], None]


class BatchProcessor:
    """Runs write operations through the retry controller in batches."""

    def __init__(
        self,
        client: ShopClient,
        retry: RetryController,
        audit: AuditLog | None = None,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], float] = time.monotonic,
        on_progress: BatchProgressCallback | None = None,
    ) -> None:
        self._client = client
        self._retry = retry
        self._audit = audit
        self.batch_size = max(1, batch_size)
        self._clock = clock
        self._on_progress = on_progress

    def process(
        self,
        operations: Sequence[WriteOperation],
        batch_size: int | None = None,
        name: str = "write",
    ) -> BatchResult:
        """Run every operation, batch by batch.

        Args:
            operations: Operations to run.
            batch_size: Overrides the configured batch size.
            name: Label used in audit records.

        Returns:
            BatchResult with one ItemResult per operation, in order.
        """
        size = max(1, batch_size or self.batch_size)
        result = BatchResult()
        started = self._clock()
        total = len(operations)

        for batch_index, offset in enumerate(range(0, total, size), start=1):
            batch = operations[offset:offset + size]
            batch_info = {
                "name": name,
                "index": batch_index,
                "size": len(batch),
                "offset": offset,
                "total": total,
            }
            if self._audit is not None:
                self._audit.log_batch_start(batch_info)

            batch_started = self._clock()
            items = [self._run(op) for op in batch]
            duration = self._clock() - batch_started
            result.items.extend(items)

            succeeded = sum(1 for item in items if item.success)
            failed = len(items) - succeeded
            if self._audit is not None:
                for item in items:
                    if not item.success:
                        self._audit.log_error(
                            item.error or "unknown error",
                            {
                                "endpoint": item.operation.endpoint,
                                "method": item.operation.method,
                                "record_id": item.operation.record_id,
                                "attempts": item.attempts,
                            },
                        )
                self._audit.log_batch_complete(
                    batch_info,
                    {"succeeded": succeeded, "failed": failed, "duration": duration},
                )

            processed = min(offset + size, total)
            logger.info(
                f"Processed {processed} of {total} operations "
                f"({succeeded} ok, {failed} failed in batch {batch_index})"
            )
            if self._on_progress:
                self._on_progress(processed, total)

        result.duration = self._clock() - started
        return result

    def _run(self, operation: WriteOperation) -> ItemResult:
        outcome = self._retry.execute_with_retry(
            lambda: self._client.request(
                operation.endpoint, method=operation.method, payload=operation.payload
            ),
            endpoint=operation.endpoint,
            method=operation.method,
            payload=operation.payload,
        )
        if outcome.success:
            return ItemResult(
                operation=operation,
                success=True,
                attempts=outcome.attempts,
                data=outcome.data.data if outcome.data else None,
            )
        logger.warning(
            f"{operation.method} {operation.endpoint} failed after "
            f"{outcome.attempts} attempts: {outcome.error_message}"
        )
        return ItemResult(
            operation=operation,
            success=False,
            attempts=outcome.attempts,
            error=outcome.error_message,
        )
