"""
Snapshot State Machine.

Drives the platform's catalog export job on demand (every get_snapshot() call
is one poll) and decides when its result may be served:

    NONE / CANCELED / FAILED  -> start a new export, report in progress
    CREATED / RUNNING         -> report in progress, never start a second job
    COMPLETED, stale          -> start a new export, keep serving the last snapshot
    COMPLETED, fresh          -> download once, rebuild, cache and serve

A poll that times out or errors counts as FAILED.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from . import settings, utils
from .exceptions import ExportError, StoreError
from .exporter import BulkExporter
from .reconstructor import rebuild_catalog
from .schemas import (
    IN_FLIGHT_STATES,
    CatalogEntry,
    ExportState,
    ExportStatus,
    Snapshot,
    SnapshotView,
)

logger = logging.getLogger(__name__)


class SnapshotStateMachine:
    def __init__(
        self,
        exporter: BulkExporter,
        freshness_window: timedelta = timedelta(minutes=settings.FRESHNESS_WINDOW_MINUTES),
        reconstruct: Callable[[Iterable[dict]], list[CatalogEntry]] = rebuild_catalog,
        clock: Callable[[], datetime] = utils.utcnow,
    ):
        self.exporter = exporter
        self.freshness_window = freshness_window
        self.reconstruct = reconstruct
        self.clock = clock

        self._job_id: Optional[str] = None
        self._snapshot: Optional[Snapshot] = None
        self._lock = threading.Lock()

    @property
    def snapshot(self) -> Optional[Snapshot]:
        return self._snapshot

    def is_fresh(self, status: ExportStatus) -> bool:
        if status.completed_at is None:
            return False
        return self.clock() - status.completed_at <= self.freshness_window

    def get_snapshot(self) -> SnapshotView:
        with self._lock:
            status = self._poll()

            if status.state in IN_FLIGHT_STATES:
                logger.info(f"⏳ Catalog export {status.job_id} is {status.state.value}.")
                return self._view(status.state, in_progress=True)

            if status.state == ExportState.COMPLETED:
                if not self.is_fresh(status):
                    logger.info("Export result is stale. Starting a new export.")
                    return self._start_export(stale=True)
                return self._serve(status)

            logger.info(f"No usable export ({status.state.value}). Starting a new one.")
            return self._start_export()

    # --- Internals ---

    def _poll(self) -> ExportStatus:
        try:
            status = self.exporter.poll_status(self._job_id)
        except StoreError as e:
            logger.warning(f"⚠️ Export status poll failed, treating job as FAILED: {e}")
            return ExportStatus(job_id=self._job_id, state=ExportState.FAILED)
        if status.job_id:
            self._job_id = status.job_id
        return status

    def _start_export(self, stale: bool = False) -> SnapshotView:
        try:
            self._job_id = self.exporter.start_export()
        except (StoreError, ExportError) as e:
            logger.error(f"❌ Could not start catalog export: {e}")
            return self._view(ExportState.FAILED, in_progress=False, stale=stale, error=str(e))
        return self._view(ExportState.CREATED, in_progress=True, stale=stale)

    def _serve(self, status: ExportStatus) -> SnapshotView:
        cached = self._snapshot
        if cached and cached.job_id == status.job_id and cached.completed_at == status.completed_at:
            return self._view(ExportState.COMPLETED, in_progress=False)

        if status.result_url:
            try:
                entries = self.reconstruct(self.exporter.fetch_result(status.result_url))
            except StoreError as e:
                logger.error(f"❌ Could not download export result: {e}")
                return self._start_export()
        else:
            # The platform omits the URL when the export matched no objects.
            logger.warning("⚠️ Export completed without a result file; catalog is empty.")
            entries = []

        self._snapshot = Snapshot(
            version=(cached.version + 1) if cached else 1,
            job_id=status.job_id,
            completed_at=status.completed_at,
            fetched_at=self.clock(),
            entries=entries,
        )
        logger.info(
            f"✅ Snapshot v{self._snapshot.version} built: {len(entries)} containers, "
            f"{len(self._snapshot.items())} items."
        )
        return self._view(ExportState.COMPLETED, in_progress=False)

    def _view(self, state: ExportState, in_progress: bool, stale: bool = False, error: str = None) -> SnapshotView:
        # Callers keep seeing the previous snapshot while a new export runs.
        return SnapshotView(
            state=state,
            in_progress=in_progress,
            snapshot=self._snapshot,
            stale=stale or (in_progress and self._snapshot is not None),
            error=error,
        )
