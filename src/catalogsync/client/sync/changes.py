"""Change detection by canonical-field fingerprints.

This module provides:
- CANONICAL_FIELDS: the fields whose changes matter, per record kind
- normalize / fingerprint: deterministic digest of canonical fields
- classify: NEW / UPDATED / UNCHANGED against a stored fingerprint
- diff: ChangeSet for a fresh fetch against stored fingerprints
- ChangeDetector: the above bound to one record kind

A fingerprint depends on canonical fields only. Bookkeeping fields such as
_hash, _last_synced_at or updated_at never affect it; any change to a
canonical field always does. A field missing from CANONICAL_FIELDS is a
field whose edits go unnoticed, so every field that should trigger a
re-export (prices included) must be listed.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from catalogsync.client.sync.types import ChangeSet, Record
from catalogsync.core.types import ChangeKind

logger = logging.getLogger(__name__)

PRODUCT_FIELDS: tuple[str, ...] = (
    "id",
    "title",
    "handle",
    "body_html",
    "vendor",
    "product_type",
    "tags",
    "status",
    "published",
    "published_at",
    "template_suffix",
    "seo_title",
    "seo_description",
)

VARIANT_FIELDS: tuple[str, ...] = (
    "id",
    "product_id",
    "title",
    "option1",
    "option2",
    "option3",
    "sku",
    "barcode",
    "price",
    "compare_at_price",
    "cost",
    "weight",
    "weight_unit",
    "inventory_policy",
    "inventory_management",
    "fulfillment_service",
    "requires_shipping",
    "taxable",
    "tax_code",
)

INVENTORY_LEVEL_FIELDS: tuple[str, ...] = (
    "inventory_item_id",
    "location_id",
    "available",
)

METAFIELD_FIELDS: tuple[str, ...] = (
    "id",
    "owner_id",
    "owner_resource",
    "namespace",
    "key",
    "value",
    "type",
)

CANONICAL_FIELDS: dict[str, tuple[str, ...]] = {
    "products": PRODUCT_FIELDS,
    "variants": VARIANT_FIELDS,
    "inventory_levels": INVENTORY_LEVEL_FIELDS,
    "metafields": METAFIELD_FIELDS,
}

# Fields rendered as canonical TRUE/FALSE tokens
BOOLEAN_FIELDS: frozenset[str] = frozenset(
    {"published", "requires_shipping", "taxable"}
)

# String fields holding comma-separated, order-insensitive lists
LIST_FIELDS: frozenset[str] = frozenset({"tags"})

TRUE_TOKEN = "TRUE"
FALSE_TOKEN = "FALSE"


def canonical_fields(kind: str) -> tuple[str, ...]:
    """Get the canonical field list of a record kind.

    Raises:
        KeyError: If the kind is unknown.
    """
    try:
        return CANONICAL_FIELDS[kind]
    except KeyError:
        raise KeyError(f"Unknown record kind: {kind}") from None


def _as_bool_token(value: Any) -> str:
    if isinstance(value, str):
        return TRUE_TOKEN if value.strip().lower() in ("true", "1", "yes", "global") else FALSE_TOKEN
    return TRUE_TOKEN if value else FALSE_TOKEN


def _normalize_value(name: str, value: Any) -> Any:
    if name in BOOLEAN_FIELDS:
        return _as_bool_token(value)
    if value is None:
        return ""
    if isinstance(value, (list, tuple, set)):
        return ",".join(sorted(str(v).strip() for v in value))
    if name in LIST_FIELDS and isinstance(value, str):
        parts = [p.strip() for p in value.split(",") if p.strip()]
        return ",".join(sorted(parts))
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, bool):
        return _as_bool_token(value)
    return str(value)


def normalize(record: Mapping[str, Any], kind: str) -> dict[str, Any]:
    """Extract and normalize the canonical fields of a record.

    Missing fields normalize to "" (booleans to FALSE).
    """
    return {name: _normalize_value(name, record.get(name)) for name in canonical_fields(kind)}


def fingerprint(record: Mapping[str, Any], kind: str) -> str:
    """Compute the 128-bit hex fingerprint of a record's canonical fields."""
    payload = json.dumps(normalize(record, kind), sort_keys=True, separators=(",", ":"))
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def classify(
    record: Mapping[str, Any], stored_fingerprint: str | None, kind: str
) -> ChangeKind:
    """Classify a fetched record against its stored fingerprint."""
    if not stored_fingerprint:
        return ChangeKind.NEW
    if fingerprint(record, kind) == stored_fingerprint:
        return ChangeKind.UNCHANGED
    return ChangeKind.UPDATED


def default_record_key(record: Mapping[str, Any]) -> str:
    """Identifier of a record as a string."""
    return str(record.get("id", ""))


def diff(
    fresh: Iterable[Record],
    stored: Mapping[str, str],
    kind: str,
    key: Callable[[Mapping[str, Any]], str] = default_record_key,
    *,
    detect_deletions: bool = True,
) -> ChangeSet:
    """Diff a fresh fetch against stored fingerprints.

    Args:
        fresh: Freshly fetched records.
        stored: Stored fingerprints keyed by record id.
        kind: Record kind (selects canonical fields).
        key: Function returning a record's id.
        detect_deletions: Report stored ids missing from the fetch as
            deletions (disable for partial fetches).

    Returns:
        ChangeSet. to_delete holds {"id": <id>} stubs for removed records.
    """
    changes = ChangeSet()
    seen: set[str] = set()

    for record in fresh:
        record_id = key(record)
        if record_id in seen:
            logger.debug(f"Skipping duplicate {kind} record {record_id}")
            continue
        seen.add(record_id)

        status = classify(record, stored.get(record_id), kind)
        if status is ChangeKind.NEW:
            changes.to_add.append(record)
        elif status is ChangeKind.UPDATED:
            changes.to_update.append(record)
        else:
            changes.unchanged.append(record)

    if detect_deletions:
        for record_id in sorted(set(stored) - seen):
            changes.to_delete.append({"id": record_id})

    return changes


class ChangeDetector:
    """Change detection bound to one record kind."""

    def __init__(
        self,
        kind: str,
        key: Callable[[Mapping[str, Any]], str] = default_record_key,
    ) -> None:
        canonical_fields(kind)  # Fail fast on unknown kinds
        self.kind = kind
        self._key = key
        self.last_summary: dict[str, int] = {}

    def fingerprint(self, record: Mapping[str, Any]) -> str:
        return fingerprint(record, self.kind)

    def classify(self, record: Mapping[str, Any], stored_fingerprint: str | None) -> ChangeKind:
        return classify(record, stored_fingerprint, self.kind)

    def diff(
        self,
        fresh: Iterable[Record],
        stored: Mapping[str, str],
        *,
        detect_deletions: bool = True,
    ) -> ChangeSet:
        changes = diff(
            fresh, stored, self.kind, self._key, detect_deletions=detect_deletions
        )
        self.last_summary = changes.summary()
        logger.info(f"Diffed {self.kind}: {self.last_summary}")
        return changes
