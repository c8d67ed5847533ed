"""
Pytest fixtures for the stocklink test suite.

Provides in-memory stand-ins for the platform collaborators:
- FakeAttributeStore: per-item attributes with write logging and failure injection
- FakeExporter: a scriptable export job
- Clock: a settable time source
"""
import json
import threading
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional

import pytest

from stocklink.attributes import (
    DEPENDENT_IDS,
    IS_SOURCE,
    RATIO,
    SOURCE_REF,
    AttributeStore,
    encode_value,
    item_from_record,
)
from stocklink.exceptions import TransportError
from stocklink.exporter import BulkExporter
from stocklink.reconciler import RelationshipReconciler
from stocklink.schemas import AttributeWrite, ExportState, ExportStatus, Item
from stocklink.service import StockLinkService


class FakeAttributeStore(AttributeStore):
    def __init__(self):
        self.values: dict[tuple[str, str, str], str] = {}
        self.details: dict[str, dict] = {}
        self.writes: list[tuple[str, list[str]]] = []
        self.reads = 0
        self.fail_writes_on: set[str] = set()
        self.fail_reads_on: set[str] = set()
        self._lock = threading.Lock()

    # --- Test helpers ---

    def seed(
        self,
        item_id: str,
        is_source: Optional[bool] = None,
        dependents: Optional[list[str]] = None,
        source_ref: Optional[str] = None,
        ratio: Optional[int] = None,
        title: str = "",
        sku: str = "",
        quantity: int = 0,
    ):
        if is_source is not None:
            self.values[(item_id, IS_SOURCE.namespace, IS_SOURCE.key)] = "true" if is_source else "false"
        if dependents is not None:
            self.values[(item_id, DEPENDENT_IDS.namespace, DEPENDENT_IDS.key)] = json.dumps(dependents)
        if source_ref is not None:
            self.values[(item_id, SOURCE_REF.namespace, SOURCE_REF.key)] = json.dumps([source_ref])
        if ratio is not None:
            self.values[(item_id, RATIO.namespace, RATIO.key)] = str(ratio)
        self.details[item_id] = {"title": title, "sku": sku, "inventoryQuantity": quantity}

    def raw(self, item_id: str, definition) -> Optional[str]:
        return self.values.get((item_id, definition.namespace, definition.key))

    # --- AttributeStore ---

    def get_attribute(self, item_id: str, namespace: str, key: str) -> Optional[str]:
        with self._lock:
            self.reads += 1
            if item_id in self.fail_reads_on:
                raise TransportError(f"read of {item_id} timed out")
            return self.values.get((item_id, namespace, key))

    def set_attributes(self, item_id: str, writes: list[AttributeWrite]) -> None:
        with self._lock:
            if {w.value is None for w in writes} == {True, False}:
                raise ValueError(f"Cannot set and delete attributes of {item_id} in one call")
            if item_id in self.fail_writes_on:
                raise TransportError(f"write to {item_id} timed out")
            for write in writes:
                encoded = encode_value(write)
                if encoded is None:
                    self.values.pop((item_id, write.namespace, write.key), None)
                else:
                    self.values[(item_id, write.namespace, write.key)] = encoded
            self.writes.append((item_id, [w.key for w in writes]))

    def get_item(self, item_id: str) -> Item:
        if item_id in self.fail_reads_on:
            raise TransportError(f"read of {item_id} timed out")
        record = {"id": item_id, **self.details.get(item_id, {})}
        for definition in (IS_SOURCE, DEPENDENT_IDS, SOURCE_REF, RATIO):
            value = self.raw(item_id, definition)
            if value is not None:
                record[definition.alias] = {"value": value}
        return item_from_record(record)


class FakeExporter(BulkExporter):
    def __init__(self):
        self.status = ExportStatus(state=ExportState.NONE)
        self.records: list[dict] = []
        self.started = 0
        self.fetched = 0
        self.poll_error: Optional[Exception] = None
        self.start_error: Optional[Exception] = None

    def complete(self, completed_at: datetime, job_id: str = "gid://shopify/BulkOperation/1", url="https://files/result.jsonl"):
        self.status = ExportStatus(
            job_id=job_id, state=ExportState.COMPLETED, completed_at=completed_at, result_url=url
        )

    def start_export(self) -> str:
        if self.start_error:
            raise self.start_error
        self.started += 1
        job_id = f"gid://shopify/BulkOperation/{100 + self.started}"
        self.status = ExportStatus(job_id=job_id, state=ExportState.CREATED)
        return job_id

    def poll_status(self, job_id: Optional[str] = None) -> ExportStatus:
        if self.poll_error:
            raise self.poll_error
        return self.status

    def fetch_result(self, result_url: str) -> Iterator[dict]:
        self.fetched += 1
        return iter(list(self.records))


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def catalog_records() -> list[dict]:
    """A small export: one source with one dependent, plus an unlinked item."""
    return [
        {"id": "gid://shopify/Product/1", "title": "Coffee Beans", "createdAt": "2025-01-01T00:00:00Z"},
        {
            "id": "gid://shopify/ProductVariant/11",
            "title": "1kg",
            "sku": "BEAN-1KG",
            "inventoryQuantity": 40,
            "masterMetafield": {"value": "true"},
            "childrenMetafield": {"value": '["gid://shopify/ProductVariant/21"]'},
            "__parentId": "gid://shopify/Product/1",
        },
        {"id": "gid://shopify/Product/2", "title": "Coffee Bundle"},
        {
            "id": "gid://shopify/ProductVariant/21",
            "title": "Bundle",
            "sku": "BUNDLE",
            "inventoryQuantity": 20,
            "parentMasterMetafield": {"value": '["gid://shopify/ProductVariant/11"]'},
            "qtyManagementMetafield": {"value": "2"},
            "__parentId": "gid://shopify/Product/2",
        },
        {
            "id": "gid://shopify/ProductVariant/22",
            "title": "Sample",
            "sku": "SAMPLE",
            "inventoryQuantity": 5,
            "__parentId": "gid://shopify/Product/2",
        },
    ]


@pytest.fixture
def store() -> FakeAttributeStore:
    return FakeAttributeStore()


@pytest.fixture
def reconciler(store) -> RelationshipReconciler:
    return RelationshipReconciler(store)


@pytest.fixture
def exporter() -> FakeExporter:
    return FakeExporter()


@pytest.fixture
def clock() -> Clock:
    return Clock(NOW)


@pytest.fixture
def service(store, exporter, clock) -> StockLinkService:
    return StockLinkService(store, exporter, limit=None, clock=clock, detail_concurrency=3)
