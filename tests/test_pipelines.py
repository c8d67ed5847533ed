"""
Report pipelines: relationship export and drift audit, run end to end
against the in-memory store and exporter.
"""
import json
from datetime import timedelta

import pandas as pd
import pytest
import requests

from stocklink import data_handler, settings
from stocklink.pipelines.audit import DriftAuditPipeline
from stocklink.pipelines.relationships import RelationshipReportPipeline
from stocklink.schemas import ReconcileStatus

from conftest import NOW, catalog_records

SOURCE = "gid://shopify/ProductVariant/11"
BUNDLE = "gid://shopify/ProductVariant/21"
SAMPLE = "gid://shopify/ProductVariant/22"


@pytest.fixture(autouse=True)
def output_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "OUTPUT_DIR", tmp_path)
    monkeypatch.setattr(settings, "SAVE_JSON_OUTPUT", False)
    monkeypatch.setattr(settings, "WEBHOOK_URL", None)
    return tmp_path


@pytest.fixture
def fresh_export(exporter):
    exporter.records = catalog_records()
    exporter.complete(NOW - timedelta(minutes=3))
    return exporter


class TestRelationshipReport:
    def test_one_row_per_link(self, service, fresh_export, output_dir):
        pipeline = RelationshipReportPipeline(service, test_mode=True)

        rows = pipeline.run()

        assert len(rows) == 1
        row = rows[0]
        assert row.source_title == "Coffee Beans - 1kg"
        assert row.dependent_id == BUNDLE
        assert row.dependent_title == "Coffee Bundle - Bundle"
        assert row.ratio == 2
        assert pipeline.status_summary["Synced Items"] == 2
        assert pipeline.status_summary["Limit"] == "unlimited"

        csv = pd.read_csv(pipeline.saved_paths[0])
        assert list(csv.columns)[:2] == ["Source ID", "Source"]
        assert csv.loc[0, "Dependent SKU"] == "BUNDLE"

    def test_source_without_dependents_gets_a_row(self, service, exporter):
        records = catalog_records()
        records[1] = {**records[1], "childrenMetafield": {"value": "[]"}}
        exporter.records = records
        exporter.complete(NOW - timedelta(minutes=3))

        rows = RelationshipReportPipeline(service, test_mode=True).run()

        assert len(rows) == 1
        assert rows[0].dependent_id is None

    def test_export_in_progress_produces_nothing(self, service, exporter, output_dir):
        pipeline = RelationshipReportPipeline(service, test_mode=True)

        assert pipeline.run() is None
        assert exporter.started == 1
        assert list(output_dir.iterdir()) == []

    def test_pending_edit_shows_in_report(self, service, fresh_export, store):
        store.seed(SOURCE, is_source=True, dependents=[BUNDLE])
        store.seed(BUNDLE, source_ref=SOURCE, ratio=2)
        store.seed(SAMPLE)
        service.get_snapshot()
        service.add_dependent(SOURCE, SAMPLE, 5)

        rows = RelationshipReportPipeline(service, test_mode=True).run()

        assert {row.dependent_id: row.ratio for row in rows} == {BUNDLE: 2, SAMPLE: 5}


class TestDriftAudit:
    def test_consistent_catalog_reports_nothing(self, service, fresh_export, store):
        store.seed(SOURCE, is_source=True, dependents=[BUNDLE])
        store.seed(BUNDLE, source_ref=SOURCE, ratio=2)

        pipeline = DriftAuditPipeline(service, test_mode=True)
        rows = pipeline.run()

        assert rows == []
        assert pipeline.status_summary["Drifted Links"] == 0
        assert pipeline.saved_paths == []

    def test_missing_back_reference_is_reported(self, service, fresh_export, store):
        # Live membership lists an item that never got its back-reference.
        store.seed(SOURCE, is_source=True, dependents=[BUNDLE, SAMPLE])
        store.seed(BUNDLE, source_ref=SOURCE, ratio=2)
        store.seed(SAMPLE)

        rows = DriftAuditPipeline(service, test_mode=True).run()

        assert len(rows) == 1
        assert rows[0].item_id == SAMPLE
        assert rows[0].source_id == SOURCE
        assert rows[0].status == ReconcileStatus.MISSING_BACK_REFERENCE

    def test_orphaned_back_reference_is_reported(self, service, fresh_export, store):
        store.seed(SOURCE, is_source=True, dependents=[])
        store.seed(BUNDLE, source_ref=SOURCE, ratio=2)

        pipeline = DriftAuditPipeline(service, test_mode=True)
        rows = pipeline.run()

        assert [(r.item_id, r.status) for r in rows] == [
            (BUNDLE, ReconcileStatus.ORPHANED_BACK_REFERENCE)
        ]
        assert pipeline.saved_paths[0].name.startswith("relationships_drift_audit_report_")

    def test_unreadable_items_are_counted(self, service, fresh_export, store):
        store.seed(SOURCE, is_source=True, dependents=[BUNDLE])
        store.seed(BUNDLE, source_ref=SOURCE, ratio=2)
        store.fail_reads_on = {BUNDLE}

        pipeline = DriftAuditPipeline(service, test_mode=True)
        pipeline.run()

        # The source check reads the dependent too, so both are unreadable.
        assert pipeline.status_summary["Unreadable Items"] == 2


class TestWebhook:
    def test_rows_and_summary_are_posted(self, service, fresh_export, monkeypatch):
        posted = {}

        class Accepted:
            def raise_for_status(self):
                pass

        def fake_post(url, data=None, headers=None, timeout=None):
            posted["url"] = url
            posted["payload"] = json.loads(data)
            return Accepted()

        monkeypatch.setattr(settings, "WEBHOOK_URL", "https://hooks.example/stock")
        monkeypatch.setattr(data_handler.requests, "post", fake_post)

        pipeline = RelationshipReportPipeline(service, test_mode=False)
        pipeline.run()

        assert pipeline.delivered
        assert posted["url"] == "https://hooks.example/stock"
        assert posted["payload"]["reportType"] == "relationships"
        assert posted["payload"]["reportData"][0]["Dependent ID"] == BUNDLE
        assert posted["payload"]["metadata"]["Rows"] == 1

    def test_unreachable_webhook_is_logged_not_raised(self, service, fresh_export, monkeypatch):
        def refuse(*args, **kwargs):
            raise requests.exceptions.ConnectionError("refused")

        monkeypatch.setattr(settings, "WEBHOOK_URL", "https://hooks.example/stock")
        monkeypatch.setattr(data_handler.requests, "post", refuse)

        pipeline = RelationshipReportPipeline(service, test_mode=False)

        assert pipeline.run() is not None
        assert not pipeline.delivered
