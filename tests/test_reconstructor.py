"""
Flat-to-hierarchy reconstruction of export records.
"""
import random

import pytest

from stocklink.exporter import parse_jsonl
from stocklink.reconstructor import IMAGE, ITEM, ATTRIBUTE, classify, rebuild_catalog

from conftest import catalog_records

P1 = "gid://shopify/Product/1"
P2 = "gid://shopify/Product/2"


def flatten(entries) -> set[tuple[str, str, str]]:
    """Test-only inverse: (parent, bucket, child identity) associations."""
    associations = set()
    for entry in entries:
        for item in entry.items:
            associations.add((entry.id, ITEM, item.id))
        for image in entry.images:
            associations.add((entry.id, IMAGE, image.original_src))
        for attribute in entry.attributes:
            associations.add((entry.id, ATTRIBUTE, f"{attribute.namespace}.{attribute.key}"))
    return associations


def mixed_records() -> list[dict]:
    return catalog_records() + [
        {"id": "gid://shopify/ProductImage/5", "originalSrc": "https://cdn/p1.jpg", "__parentId": P1},
        {"namespace": "custom", "key": "origin", "value": "Colombia", "__parentId": P1},
        {"namespace": "custom", "key": "roast", "value": "dark", "__parentId": P2},
    ]


class TestRebuildCatalog:
    def test_nests_children_under_their_containers(self):
        entries = rebuild_catalog(mixed_records())

        by_id = {entry.id: entry for entry in entries}
        assert set(by_id) == {P1, P2}
        assert [item.sku for item in by_id[P1].items] == ["BEAN-1KG"]
        assert [item.sku for item in by_id[P2].items] == ["BUNDLE", "SAMPLE"]
        assert by_id[P1].images[0].original_src == "https://cdn/p1.jpg"
        assert [a.key for a in by_id[P1].attributes] == ["origin"]

    def test_child_before_parent_is_attached(self):
        records = list(reversed(mixed_records()))

        entries = rebuild_catalog(records)

        assert flatten(entries) == flatten(rebuild_catalog(mixed_records()))

    def test_order_independent_round_trip(self):
        expected = flatten(rebuild_catalog(mixed_records()))
        rng = random.Random(3)
        for _ in range(10):
            shuffled = mixed_records()
            rng.shuffle(shuffled)
            assert flatten(rebuild_catalog(shuffled)) == expected

    def test_orphans_are_dropped(self):
        records = catalog_records() + [
            {"id": "gid://shopify/ProductVariant/99", "title": "Lost", "inventoryQuantity": 1, "__parentId": "gid://shopify/Product/404"}
        ]

        entries = rebuild_catalog(records)

        assert "gid://shopify/ProductVariant/99" not in {i.id for e in entries for i in e.items}

    @pytest.mark.parametrize("title", ["Untitled Variant", "untitled variant", "  UNTITLED VARIANT "])
    def test_placeholder_items_are_dropped(self, title):
        records = [
            {"id": P1, "title": "Mug"},
            {"id": "gid://shopify/ProductVariant/7", "title": title, "inventoryQuantity": 3, "__parentId": P1},
        ]

        entries = rebuild_catalog(records)

        assert entries[0].items == []

    def test_relationship_attributes_are_decoded(self):
        entries = rebuild_catalog(catalog_records())
        items = {item.id: item for entry in entries for item in entry.items}

        source = items["gid://shopify/ProductVariant/11"]
        dependent = items["gid://shopify/ProductVariant/21"]
        plain = items["gid://shopify/ProductVariant/22"]
        assert source.is_source and source.dependent_ids == [dependent.id]
        assert dependent.source_ref == source.id and dependent.ratio == 2
        assert dependent.parent_title == "Coffee Bundle"
        assert not plain.is_source and plain.source_ref is None and plain.ratio == 1

    def test_container_image_is_used_for_items_without_one(self):
        entries = rebuild_catalog(mixed_records())

        bean = next(e for e in entries if e.id == P1).items[0]
        assert bean.image_src == "https://cdn/p1.jpg"


class TestClassify:
    def test_item_takes_precedence_over_image(self):
        record = {"inventoryQuantity": 0, "originalSrc": "https://cdn/x.jpg", "__parentId": P1}
        assert classify(record) == ITEM

    def test_image_takes_precedence_over_attribute(self):
        record = {"originalSrc": "https://cdn/x.jpg", "namespace": "a", "key": "b", "value": "c"}
        assert classify(record) == IMAGE

    def test_attribute_needs_all_three_fields(self):
        assert classify({"namespace": "a", "key": "b", "value": "c"}) == ATTRIBUTE
        assert classify({"namespace": "a", "key": "b"}) is None


class TestParseJsonl:
    def test_malformed_lines_are_skipped(self):
        lines = ['{"id": "a"}', "not json", "", '{"id": "b", "__parentId": "a"}', "[1, 2]"]

        records = list(parse_jsonl(lines))

        assert [r["id"] for r in records] == ["a", "b"]
