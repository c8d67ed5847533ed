import threading
import time

from stocklink.details import fetch_item_details

from conftest import FakeAttributeStore


class TestFetchItemDetails:
    def test_failed_item_is_degraded(self, store):
        store.seed("a", title="Alpha", sku="A-1", quantity=4)
        store.seed("b", title="Beta")
        store.fail_reads_on = {"b"}

        details = fetch_item_details(store, ["a", "b"], max_workers=2)

        assert details["a"].item.sku == "A-1"
        assert details["a"].item.inventory_quantity == 4
        assert details["b"].degraded
        assert details["b"].item is None
        assert "timed out" in details["b"].error

    def test_order_preserved_and_duplicates_dropped(self, store):
        for item_id in ("c", "a", "b"):
            store.seed(item_id)

        details = fetch_item_details(store, ["c", "a", "c", "b"], max_workers=3)

        assert list(details) == ["c", "a", "b"]

    def test_empty_request(self, store):
        assert fetch_item_details(store, []) == {}

    def test_concurrency_is_bounded(self):
        class SlowStore(FakeAttributeStore):
            def __init__(self):
                super().__init__()
                self.active = 0
                self.peak = 0
                self.gauge = threading.Lock()

            def get_item(self, item_id):
                with self.gauge:
                    self.active += 1
                    self.peak = max(self.peak, self.active)
                time.sleep(0.02)
                with self.gauge:
                    self.active -= 1
                return super().get_item(item_id)

        store = SlowStore()
        ids = [f"item-{n}" for n in range(12)]

        details = fetch_item_details(store, ids, max_workers=3)

        assert len(details) == 12
        assert store.peak <= 3

    def test_unexpected_error_degrades_only_that_item(self, store, monkeypatch):
        store.seed("a", title="Alpha")
        store.seed("b", title="Beta")
        fetch = store.get_item

        def malformed(item_id):
            if item_id == "b":
                raise ValueError("inventoryQuantity is not an integer")
            return fetch(item_id)

        monkeypatch.setattr(store, "get_item", malformed)

        details = fetch_item_details(store, ["a", "b"], max_workers=2)

        assert details["a"].item.title == "Alpha"
        assert details["b"].degraded
        assert "ValueError" in details["b"].error
