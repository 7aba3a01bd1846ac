"""Record kinds handled by the sync core.

This module provides:
- RecordKind: protocol every record kind implements
- ProductKind, VariantKind, InventoryLevelKind, MetafieldKind
- RECORD_KINDS / get_kind: registry selected by kind name
- SYNC_ORDER: dependency order used when syncing every kind

Each kind knows how to fetch its collection (through a BulkFetcher), how to
prepare a raw API object for fingerprinting, which key identifies it in the
local store, how to render it as a tabular row, and how to write it back.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from catalogsync.client.sync.changes import canonical_fields, fingerprint
from catalogsync.client.sync.types import FetchResult, Record, WriteOperation

if TYPE_CHECKING:
    from catalogsync.client.sync.fetch import BulkFetcher

logger = logging.getLogger(__name__)


class RecordKind(Protocol):
    """Interface implemented by every record kind."""

    name: str

    def fetch(self, fetcher: BulkFetcher, filters: dict[str, Any] | None = None) -> FetchResult:
        """Fetch the whole remote collection."""
        ...

    def prepare(self, record: Mapping[str, Any]) -> Record:
        """Derive canonical fields from a raw API object."""
        ...

    def target_key(self, record: Mapping[str, Any]) -> str:
        """Identifier of the record in the local store."""
        ...

    def transform(self, record: Mapping[str, Any], now: datetime | None = None) -> Record:
        """Render a prepared record as a tabular row."""
        ...

    def write_operation(self, record: Mapping[str, Any], is_update: bool) -> WriteOperation:
        """Build the remote write for a record."""
        ...


def merge_results(results: list[FetchResult]) -> FetchResult:
    """Combine several fetches into one result."""
    items: list[Record] = []
    for result in results:
        items.extend(result.items)
    return FetchResult(
        items=items,
        count=len(items),
        elapsed_time=sum(r.elapsed_time for r in results),
        pages=sum(r.pages for r in results),
        truncated=any(r.truncated for r in results),
        fetched_at=min(
            (r.fetched_at for r in results if r.fetched_at is not None), default=None
        ),
    )


def build_row(
    kind: str,
    key: str,
    record: Mapping[str, Any],
    read_only_fields: tuple[str, ...],
    now: datetime | None,
) -> Record:
    """Tabular row: key, bookkeeping columns, read-only then canonical fields."""
    synced_at = (now or datetime.now(UTC)).isoformat()
    row: Record = {"key": key, "_hash": fingerprint(record, kind), "_last_synced_at": synced_at}
    for name in read_only_fields + canonical_fields(kind):
        row.setdefault(name, record.get(name, ""))
    return row


def writable_payload(record: Mapping[str, Any], kind: str) -> dict[str, Any]:
    """Canonical fields present on the record."""
    return {name: record[name] for name in canonical_fields(kind) if name in record}


class ProductKind:
    """Products (products.json)."""

    name = "products"

    def fetch(self, fetcher: BulkFetcher, filters: dict[str, Any] | None = None) -> FetchResult:
        return fetcher.fetch_collection("products", filters)

    def prepare(self, record: Mapping[str, Any]) -> Record:
        prepared = dict(record)
        if "published" not in prepared:
            prepared["published"] = prepared.get("published_scope") == "global" or bool(
                prepared.get("published_at")
            )
        if not prepared.get("status"):
            prepared["status"] = "draft"
        return prepared

    def target_key(self, record: Mapping[str, Any]) -> str:
        return str(record["id"])

    def transform(self, record: Mapping[str, Any], now: datetime | None = None) -> Record:
        return build_row(
            self.name, self.target_key(record), record, ("created_at", "updated_at"), now
        )

    def write_operation(self, record: Mapping[str, Any], is_update: bool) -> WriteOperation:
        payload = writable_payload(record, self.name)
        if is_update:
            return WriteOperation(
                endpoint=f"products/{record['id']}.json",
                method="PUT",
                payload={"product": payload},
                record_id=self.target_key(record),
            )
        payload.pop("id", None)
        return WriteOperation(
            endpoint="products.json",
            method="POST",
            payload={"product": payload},
            record_id=str(record.get("id", "")) or None,
        )


class VariantKind:
    """Variants, flattened from products so each carries its product_id."""

    name = "variants"

    def fetch(self, fetcher: BulkFetcher, filters: dict[str, Any] | None = None) -> FetchResult:
        query = dict(filters or {})
        query["fields"] = "id,variants"
        products = fetcher.fetch_collection("products", query)

        variants: list[Record] = []
        for product in products.items:
            for variant in product.get("variants") or []:
                flattened = dict(variant)
                flattened.setdefault("product_id", product.get("id"))
                variants.append(flattened)

        logger.info(f"Total variants found: {len(variants)}")
        return FetchResult(
            items=variants,
            count=len(variants),
            elapsed_time=products.elapsed_time,
            pages=products.pages,
            truncated=products.truncated,
            fetched_at=products.fetched_at,
        )

    def prepare(self, record: Mapping[str, Any]) -> Record:
        prepared = dict(record)
        prepared.setdefault("weight_unit", "kg")
        prepared.setdefault("inventory_policy", "deny")
        prepared.setdefault("fulfillment_service", "manual")
        return prepared

    def target_key(self, record: Mapping[str, Any]) -> str:
        return str(record["id"])

    def transform(self, record: Mapping[str, Any], now: datetime | None = None) -> Record:
        return build_row(
            self.name,
            self.target_key(record),
            record,
            ("created_at", "updated_at", "inventory_item_id"),
            now,
        )

    def write_operation(self, record: Mapping[str, Any], is_update: bool) -> WriteOperation:
        payload = writable_payload(record, self.name)
        if is_update:
            return WriteOperation(
                endpoint=f"variants/{record['id']}.json",
                method="PUT",
                payload={"variant": payload},
                record_id=self.target_key(record),
            )
        payload.pop("id", None)
        return WriteOperation(
            endpoint=f"products/{record['product_id']}/variants.json",
            method="POST",
            payload={"variant": payload},
            record_id=str(record.get("id", "")) or None,
        )


class InventoryLevelKind:
    """Inventory levels, fetched per location."""

    name = "inventory_levels"

    def fetch(self, fetcher: BulkFetcher, filters: dict[str, Any] | None = None) -> FetchResult:
        locations = fetcher.fetch_collection("locations")
        logger.info(f"Cached {locations.count} locations")

        results = [locations]
        levels: list[Record] = []
        for location in locations.items:
            query = dict(filters or {})
            query["location_ids"] = location["id"]
            result = fetcher.fetch_collection("inventory_levels", query)
            for level in result.items:
                enriched = dict(level)
                enriched.setdefault("location_name", location.get("name", ""))
                levels.append(enriched)
            results.append(result)

        merged = merge_results(results)
        merged.items = levels
        merged.count = len(levels)
        return merged

    def prepare(self, record: Mapping[str, Any]) -> Record:
        prepared = dict(record)
        if prepared.get("available") is None:
            prepared["available"] = 0
        return prepared

    def target_key(self, record: Mapping[str, Any]) -> str:
        return f"{record['inventory_item_id']}:{record['location_id']}"

    def transform(self, record: Mapping[str, Any], now: datetime | None = None) -> Record:
        return build_row(
            self.name,
            self.target_key(record),
            record,
            ("variant_id", "location_name", "sku"),
            now,
        )

    def write_operation(self, record: Mapping[str, Any], is_update: bool) -> WriteOperation:
        # Inventory is always set absolutely, create and update alike
        return WriteOperation(
            endpoint="inventory_levels/set.json",
            method="POST",
            payload={
                "location_id": record["location_id"],
                "inventory_item_id": record["inventory_item_id"],
                "available": record.get("available", 0),
            },
            record_id=self.target_key(record),
        )


class MetafieldKind:
    """Product metafields, fetched per product."""

    name = "metafields"
    owner_resource = "product"

    def fetch(self, fetcher: BulkFetcher, filters: dict[str, Any] | None = None) -> FetchResult:
        query = dict(filters or {})
        query["fields"] = "id"
        products = fetcher.fetch_collection("products", query)

        results = [products]
        metafields: list[Record] = []
        for product in products.items:
            result = fetcher.fetch_collection(f"products/{product['id']}/metafields.json")
            for metafield in result.items:
                enriched = dict(metafield)
                enriched.setdefault("owner_id", product["id"])
                enriched.setdefault("owner_resource", self.owner_resource)
                metafields.append(enriched)
            results.append(result)

        merged = merge_results(results)
        merged.items = metafields
        merged.count = len(metafields)
        return merged

    def prepare(self, record: Mapping[str, Any]) -> Record:
        prepared = dict(record)
        prepared.setdefault("owner_resource", self.owner_resource)
        return prepared

    def target_key(self, record: Mapping[str, Any]) -> str:
        return str(record["id"])

    def transform(self, record: Mapping[str, Any], now: datetime | None = None) -> Record:
        return build_row(
            self.name, self.target_key(record), record, ("created_at", "updated_at"), now
        )

    def write_operation(self, record: Mapping[str, Any], is_update: bool) -> WriteOperation:
        payload = writable_payload(record, self.name)
        payload.pop("owner_id", None)
        payload.pop("owner_resource", None)
        if is_update:
            return WriteOperation(
                endpoint=f"metafields/{record['id']}.json",
                method="PUT",
                payload={"metafield": payload},
                record_id=self.target_key(record),
            )
        payload.pop("id", None)
        return WriteOperation(
            endpoint=f"products/{record['owner_id']}/metafields.json",
            method="POST",
            payload={"metafield": payload},
            record_id=str(record.get("id", "")) or None,
        )


RECORD_KINDS: dict[str, RecordKind] = {
    kind.name: kind
    for kind in (ProductKind(), VariantKind(), InventoryLevelKind(), MetafieldKind())
}

# Products first: variants, inventory and metafields hang off them
SYNC_ORDER: tuple[str, ...] = ("products", "variants", "inventory_levels", "metafields")

# Collections served by the endpoints a kind writes to
SHARED_COLLECTIONS: dict[str, tuple[str, ...]] = {
    "products": ("products", "variants", "metafields"),
    "variants": ("variants", "products"),
    "inventory_levels": ("inventory_levels",),
    "metafields": ("metafields",),
}


def get_kind(name: str) -> RecordKind:
    """Look up a record kind by name.

    Raises:
        KeyError: If the kind is unknown.
    """
    try:
        return RECORD_KINDS[name]
    except KeyError:
        raise KeyError(
            f"Unknown record kind: {name} (expected one of {', '.join(SYNC_ORDER)})"
        ) from None
