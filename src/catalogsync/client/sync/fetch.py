"""Paginated collection retrieval.

This module provides:
- BulkFetcher: drives the page-cursor loop for one collection
- envelope_key: name of the JSON key holding a collection's items

Termination, in priority order:
1. a page returns fewer items than requested (end of collection)
2. the response carries no continuation cursor (end of collection)
3. the safety ceiling on total items is exceeded (stop early, warn)

Pages are requested strictly in cursor order; each request goes through the
gateway pacer and the retry controller.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from catalogsync.client.api import CURSOR_PARAM
from catalogsync.client.pacing import Scheduler, SystemScheduler
from catalogsync.client.sync.retry import make_operation_id
from catalogsync.client.sync.types import (
    FetchError,
    FetchProgress,
    FetchResult,
    ProgressCallback,
    Record,
)
from catalogsync.core.config import MAX_PAGE_SIZE, SyncSettings

if TYPE_CHECKING:
    from catalogsync.client.api import ShopClient
    from catalogsync.client.sync.retry import RetryController

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 10_000


def envelope_key(resource_type: str) -> str:
    """Get the response key holding the items of a collection endpoint.

    Examples:
        "products.json" -> "products"
        "products/42/variants.json" -> "variants"
        "inventory_levels" -> "inventory_levels"
    """
    last = resource_type.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
    return last.removesuffix(".json")


def collection_endpoint(resource_type: str) -> str:
    """Normalize a resource type to its collection endpoint."""
    return resource_type if resource_type.endswith(".json") else f"{resource_type}.json"


class BulkFetcher:
    """Fetches complete paginated collections."""

    def __init__(
        self,
        client: ShopClient,
        retry: RetryController,
        *,
        page_size: int = MAX_PAGE_SIZE,
        max_items: int = DEFAULT_MAX_ITEMS,
        scheduler: Scheduler | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            client: HTTP gateway.
            retry: Retry controller wrapping each page request.
            page_size: Items per page (clamped to the API maximum).
            max_items: Safety ceiling on items per fetch.
            scheduler: Clock used for elapsed time.
            on_progress: Callback invoked after every page.
        """
        self._client = client
        self._retry = retry
        self.page_size = max(1, min(page_size, MAX_PAGE_SIZE))
        self.max_items = max_items
        self._scheduler = scheduler or SystemScheduler()
        self._on_progress = on_progress

    @classmethod
    def from_settings(
        cls,
        client: ShopClient,
        retry: RetryController,
        settings: SyncSettings,
        *,
        scheduler: Scheduler | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BulkFetcher:
        """Build a fetcher from sync settings."""
        return cls(
            client,
            retry,
            page_size=settings.effective_page_size,
            max_items=settings.max_items,
            scheduler=scheduler,
            on_progress=on_progress,
        )

    def fetch_collection(
        self,
        resource_type: str,
        filters: dict[str, Any] | None = None,
    ) -> FetchResult:
        """Fetch every item of a collection.

        Args:
            resource_type: Collection name or endpoint (e.g. "products" or
                "products/42/metafields.json").
            filters: Query filters, sent with the first page only (the
                remote API rejects filters combined with a cursor).

        Returns:
            FetchResult with all items in cursor order.

        Raises:
            FetchError: If a page fails fatally or exhausts its retries.
        """
        endpoint = collection_endpoint(resource_type)
        key = envelope_key(endpoint)
        started = self._scheduler.now()

        items: list[Record] = []
        cursor: str | None = None
        pages = 0
        truncated = False

        while True:
            params: dict[str, Any] = {"limit": self.page_size}
            if cursor:
                params[CURSOR_PARAM] = cursor
            elif filters:
                params.update({k: v for k, v in filters.items() if v is not None})

            outcome = self._retry.execute_with_retry(
                lambda p=params: self._client.request(endpoint, params=p),
                operation_id=make_operation_id("GET", endpoint, params),
                endpoint=endpoint,
            )
            pages += 1

            if not outcome.success or outcome.data is None:
                logger.error(
                    f"Aborting fetch of {key} on page {pages} "
                    f"after {len(items)} items: {outcome.error_message}"
                )
                raise FetchError(key, len(items), outcome.attempts, outcome.error)

            page_items = outcome.data.data.get(key) or []
            items.extend(page_items)
            cursor = outcome.data.next_cursor

            elapsed = self._scheduler.now() - started
            logger.debug(f"Fetched {len(page_items)} {key}. Total: {len(items)}")
            self._emit(FetchProgress(key, len(items), pages, elapsed))

            if len(page_items) < self.page_size:
                break
            if not cursor:
                break
            if len(items) > self.max_items:
                logger.warning(
                    f"Safety ceiling reached for {key}: {len(items)} items "
                    f"> {self.max_items}, stopping pagination"
                )
                truncated = True
                break

        elapsed = self._scheduler.now() - started
        logger.info(f"Fetched {len(items)} {key} in {pages} pages ({elapsed:.1f}s)")
        return FetchResult(
            items=items,
            count=len(items),
            elapsed_time=elapsed,
            pages=pages,
            truncated=truncated,
            fetched_at=started,
        )

    def _emit(self, progress: FetchProgress) -> None:
        if self._on_progress:
            self._on_progress(progress)
