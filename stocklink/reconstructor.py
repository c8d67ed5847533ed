"""
Rebuilds the Catalog -> Item tree from a flat export stream.

Export records arrive in no guaranteed order: a child line can precede its
container, so the stream is read twice. The first pass registers every
container (records without a parent reference); the second attaches every
child to its container by structural shape.
"""
import logging
from typing import Any, Iterable

from . import settings
from .attributes import item_from_record
from .schemas import CatalogAttribute, CatalogEntry, ItemImage

logger = logging.getLogger(__name__)

PARENT_FIELD = "__parentId"

ITEM = "items"
IMAGE = "images"
ATTRIBUTE = "attributes"


def classify(record: dict[str, Any]) -> str | None:
    """
    Buckets a child record by the fields it carries.
    Precedence matters when a record could match more than one shape:
    item before image before attribute.
    """
    if "inventoryQuantity" in record:
        return ITEM
    if record.get("originalSrc"):
        return IMAGE
    if record.get("namespace") and record.get("key") and record.get("value"):
        return ATTRIBUTE
    return None


def is_placeholder(record: dict[str, Any], placeholder_title: str) -> bool:
    title = record.get("title")
    return bool(title) and title.strip().lower() == placeholder_title.strip().lower()


def rebuild_catalog(
    records: Iterable[dict[str, Any]],
    placeholder_title: str = settings.PLACEHOLDER_TITLE,
) -> list[CatalogEntry]:
    records = list(records)

    # --- Pass 1: containers ---
    containers: dict[str, dict[str, Any]] = {}
    for record in records:
        if record.get(PARENT_FIELD):
            continue
        containers[record["id"]] = {
            "record": record,
            IMAGE: [],
            ATTRIBUTE: [],
            ITEM: [],
        }

    # --- Pass 2: children ---
    dropped_orphans = 0
    dropped_placeholders = 0
    for record in records:
        parent_id = record.get(PARENT_FIELD)
        if not parent_id:
            continue
        parent = containers.get(parent_id)
        if parent is None:
            dropped_orphans += 1
            continue

        bucket = classify(record)
        if bucket == ITEM and is_placeholder(record, placeholder_title):
            dropped_placeholders += 1
            continue
        if bucket is None:
            logger.debug(f"Unclassifiable export record under {parent_id}: {sorted(record)}")
            continue
        parent[bucket].append(record)

    if dropped_orphans:
        logger.warning(f"⚠️ Dropped {dropped_orphans} export records with no known parent.")
    if dropped_placeholders:
        logger.info(f"Dropped {dropped_placeholders} placeholder items.")

    return [_build_entry(container) for container in containers.values()]


def _build_entry(container: dict[str, Any]) -> CatalogEntry:
    record = container["record"]
    images = [
        ItemImage(id=r.get("id"), original_src=r["originalSrc"]) for r in container[IMAGE]
    ]
    parent = {
        "id": record["id"],
        "title": record.get("title") or "",
        "image_src": images[0].original_src if images else None,
    }
    return CatalogEntry(
        id=record["id"],
        title=record.get("title") or "",
        created_at=record.get("createdAt"),
        images=images,
        attributes=[
            CatalogAttribute(namespace=r["namespace"], key=r["key"], value=str(r["value"]))
            for r in container[ATTRIBUTE]
        ],
        items=[item_from_record(r, parent) for r in container[ITEM]],
    )
