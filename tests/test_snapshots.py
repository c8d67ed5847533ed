"""
Snapshot State Machine: export lifecycle, freshness window and caching.
"""
from datetime import timedelta

from stocklink.exceptions import ExportError, TransportError
from stocklink.schemas import ExportState, ExportStatus
from stocklink.snapshots import SnapshotStateMachine

from conftest import NOW, catalog_records


def make_machine(exporter, clock):
    return SnapshotStateMachine(exporter, freshness_window=timedelta(minutes=15), clock=clock)


class TestLifecycle:
    def test_no_job_starts_an_export(self, exporter, clock):
        machine = make_machine(exporter, clock)

        view = machine.get_snapshot()

        assert exporter.started == 1
        assert view.in_progress and view.state == ExportState.CREATED
        assert view.snapshot is None

    def test_running_job_is_not_duplicated(self, exporter, clock):
        machine = make_machine(exporter, clock)
        machine.get_snapshot()
        exporter.status = ExportStatus(job_id=exporter.status.job_id, state=ExportState.RUNNING)

        view = machine.get_snapshot()
        machine.get_snapshot()

        assert exporter.started == 1
        assert view.in_progress and view.state == ExportState.RUNNING

    def test_failed_and_canceled_jobs_are_reissued(self, exporter, clock):
        machine = make_machine(exporter, clock)
        for state in (ExportState.FAILED, ExportState.CANCELED, ExportState.EXPIRED):
            exporter.status = ExportStatus(job_id="gid://shopify/BulkOperation/9", state=state)
            view = machine.get_snapshot()
            assert view.in_progress
        assert exporter.started == 3

    def test_poll_timeout_counts_as_failed(self, exporter, clock):
        machine = make_machine(exporter, clock)
        exporter.poll_error = TransportError("timed out")

        view = machine.get_snapshot()

        assert exporter.started == 1
        assert view.in_progress

    def test_start_failure_is_reported(self, exporter, clock):
        machine = make_machine(exporter, clock)
        exporter.start_error = ExportError("A bulk query operation is already in progress.")

        view = machine.get_snapshot()

        assert not view.in_progress
        assert view.state == ExportState.FAILED
        assert "already in progress" in view.error


class TestFreshness:
    def test_fresh_result_is_served(self, exporter, clock):
        exporter.records = catalog_records()
        exporter.complete(NOW - timedelta(minutes=5))
        machine = make_machine(exporter, clock)

        view = machine.get_snapshot()

        assert not view.in_progress
        assert exporter.started == 0
        assert view.snapshot.version == 1
        assert len(view.snapshot.items()) == 3

    def test_stale_result_triggers_new_export(self, exporter, clock):
        exporter.complete(NOW - timedelta(minutes=16))
        machine = make_machine(exporter, clock)

        view = machine.get_snapshot()

        assert exporter.started == 1
        assert view.in_progress
        assert exporter.fetched == 0

    def test_result_is_fetched_once(self, exporter, clock):
        exporter.records = catalog_records()
        exporter.complete(NOW - timedelta(minutes=1))
        machine = make_machine(exporter, clock)

        first = machine.get_snapshot()
        clock.advance(minutes=5)
        second = machine.get_snapshot()

        assert exporter.fetched == 1
        assert first.snapshot is second.snapshot

    def test_previous_snapshot_is_served_while_refreshing(self, exporter, clock):
        exporter.records = catalog_records()
        exporter.complete(NOW - timedelta(minutes=1))
        machine = make_machine(exporter, clock)
        first = machine.get_snapshot().snapshot

        clock.advance(minutes=20)
        refreshing = machine.get_snapshot()

        assert exporter.started == 1
        assert refreshing.in_progress and refreshing.stale
        assert refreshing.snapshot is first

        exporter.records = catalog_records()[:2]
        exporter.complete(clock.now - timedelta(minutes=1), job_id="gid://shopify/BulkOperation/2")
        fresh = machine.get_snapshot()

        assert fresh.snapshot.version == 2
        assert len(fresh.snapshot.items()) == 1

    def test_completed_without_result_file_is_empty(self, exporter, clock):
        exporter.complete(NOW - timedelta(minutes=1), url=None)
        machine = make_machine(exporter, clock)

        view = machine.get_snapshot()

        assert view.snapshot is not None
        assert view.snapshot.entries == []
        assert exporter.fetched == 0

    def test_canceling_job_counts_as_in_flight(self, exporter, clock):
        exporter.status = ExportStatus(job_id="gid://shopify/BulkOperation/9", state=ExportState.CANCELING)

        view = make_machine(exporter, clock).get_snapshot()

        assert view.in_progress
        assert exporter.started == 0
