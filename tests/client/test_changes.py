"""Tests for change detection."""

import pytest

from catalogsync.client.sync.changes import (
    ChangeDetector,
    canonical_fields,
    classify,
    diff,
    fingerprint,
    normalize,
)
from catalogsync.core.types import ChangeKind


def product(**overrides: object) -> dict[str, object]:
    """Build a product record."""
    record: dict[str, object] = {
        "id": 1,
        "title": "Linen Shirt",
        "handle": "linen-shirt",
        "vendor": "Acme",
        "tags": "summer, linen",
        "status": "active",
        "published": True,
        "updated_at": "2024-01-01T00:00:00Z",
    }
    record.update(overrides)
    return record


class TestFingerprint:
    """Tests for fingerprint()."""

    def test_deterministic(self) -> None:
        """Equal records should give equal fingerprints."""
        assert fingerprint(product(), "products") == fingerprint(product(), "products")

    def test_is_128_bit_hex(self) -> None:
        """Fingerprints should be 32 hex characters."""
        value = fingerprint(product(), "products")
        assert len(value) == 32
        int(value, 16)

    def test_canonical_change_detected(self) -> None:
        """Changing a canonical field should change the fingerprint."""
        assert fingerprint(product(), "products") != fingerprint(
            product(title="Hemp Shirt"), "products"
        )

    def test_bookkeeping_fields_ignored(self) -> None:
        """Non-canonical fields should not affect the fingerprint."""
        base = fingerprint(product(), "products")
        changed = product(
            updated_at="2025-06-01T00:00:00Z",
            _hash="deadbeef",
            _last_synced_at="2025-06-01T00:00:00Z",
            variants=[{"id": 9}],
        )
        assert fingerprint(changed, "products") == base

    def test_key_order_irrelevant(self) -> None:
        """Field order in the record should not matter."""
        record = product()
        reordered = dict(reversed(list(record.items())))
        assert fingerprint(record, "products") == fingerprint(reordered, "products")

    def test_price_change_detected(self) -> None:
        """A price change on a variant should be visible."""
        variant = {"id": 5, "product_id": 1, "sku": "SKU-1", "price": "19.99"}
        repriced = dict(variant, price="17.99")
        assert fingerprint(variant, "variants") != fingerprint(repriced, "variants")

    def test_unknown_kind(self) -> None:
        """Unknown kinds should raise KeyError."""
        with pytest.raises(KeyError):
            canonical_fields("collections")


class TestNormalize:
    """Tests for normalize()."""

    def test_booleans_to_tokens(self) -> None:
        """Booleans should become TRUE/FALSE tokens."""
        assert normalize(product(published=True), "products")["published"] == "TRUE"
        assert normalize(product(published="false"), "products")["published"] == "FALSE"
        assert normalize(product(published=None), "products")["published"] == "FALSE"

    def test_missing_fields_empty(self) -> None:
        """Missing canonical fields should normalize to empty strings."""
        assert normalize({"id": 1}, "products")["body_html"] == ""

    def test_tags_order_insensitive(self) -> None:
        """Tag lists should compare regardless of order and spacing."""
        first = fingerprint(product(tags="summer, linen"), "products")
        second = fingerprint(product(tags="linen,summer"), "products")
        assert first == second

    def test_numbers_and_strings_agree(self) -> None:
        """A numeric value and its string form should normalize equally."""
        assert normalize({"id": 5, "price": 10.5}, "variants")["price"] == "10.5"
        assert normalize({"id": "5", "price": "10.5"}, "variants")["id"] == "5"


class TestClassify:
    """Tests for classify()."""

    def test_new_without_fingerprint(self) -> None:
        """No stored fingerprint means NEW."""
        assert classify(product(), None, "products") is ChangeKind.NEW

    def test_unchanged(self) -> None:
        """Matching fingerprint means UNCHANGED."""
        stored = fingerprint(product(), "products")
        assert classify(product(), stored, "products") is ChangeKind.UNCHANGED

    def test_updated(self) -> None:
        """Different fingerprint means UPDATED."""
        stored = fingerprint(product(), "products")
        assert classify(product(vendor="Other"), stored, "products") is ChangeKind.UPDATED


class TestDiff:
    """Tests for diff()."""

    def test_buckets(self) -> None:
        """Records should land in exactly one bucket each."""
        stored = {
            "1": fingerprint(product(id=1), "products"),
            "2": fingerprint(product(id=2), "products"),
            "3": fingerprint(product(id=3), "products"),
        }
        fresh = [product(id=1), product(id=2, title="Changed"), product(id=4)]

        changes = diff(fresh, stored, "products")

        assert [r["id"] for r in changes.unchanged] == [1]
        assert [r["id"] for r in changes.to_update] == [2]
        assert [r["id"] for r in changes.to_add] == [4]
        assert changes.to_delete == [{"id": "3"}]
        assert changes.summary() == {"added": 1, "updated": 1, "deleted": 1, "unchanged": 1}

    def test_deletions_disabled(self) -> None:
        """Partial fetches should not report deletions."""
        stored = {"3": fingerprint(product(id=3), "products")}
        changes = diff([], stored, "products", detect_deletions=False)
        assert changes.to_delete == []
        assert not changes.has_changes

    def test_duplicates_counted_once(self) -> None:
        """A record fetched twice should be classified once."""
        changes = diff([product(id=1), product(id=1)], {}, "products")
        assert len(changes.to_add) == 1

    def test_custom_key(self) -> None:
        """A custom key function should identify records."""
        level = {"inventory_item_id": 7, "location_id": 3, "available": 5}
        stored = {"7:3": fingerprint(level, "inventory_levels")}

        changes = diff(
            [dict(level, available=4)],
            stored,
            "inventory_levels",
            key=lambda r: f"{r['inventory_item_id']}:{r['location_id']}",
        )

        assert len(changes.to_update) == 1
        assert changes.to_delete == []


class TestChangeDetector:
    """Tests for ChangeDetector."""

    def test_records_last_summary(self) -> None:
        """diff() should remember the last summary."""
        detector = ChangeDetector("products")
        detector.diff([product(id=1)], {})
        assert detector.last_summary["added"] == 1

    def test_rejects_unknown_kind(self) -> None:
        """Construction should fail fast on unknown kinds."""
        with pytest.raises(KeyError):
            ChangeDetector("orders")
