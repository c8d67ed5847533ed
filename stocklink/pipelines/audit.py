import logging
from concurrent.futures import ThreadPoolExecutor
import pandas as pd
from pydantic import ValidationError

from stocklink import utils
from stocklink.exceptions import StoreError
from stocklink.pipeline import DataPipeline
from stocklink.schemas import DriftRow, ReconcileReport, ReconcileStatus
from stocklink.service import StockLinkService

logger = logging.getLogger(__name__)

DRIFT_COLUMNS = ["item_id", "source_id", "status", "detail"]


class DriftAuditPipeline(DataPipeline):
    """
    Re-checks every linked item of the snapshot against the live attributes and
    reports where membership and back-reference disagree. Nothing is repaired.
    """

    def __init__(self, service: StockLinkService, test_mode: bool = False):
        super().__init__("drift_audit", test_mode=test_mode)
        self.service = service
        self.checked_at = utils.utcnow()

    def _check(self, item_id: str) -> ReconcileReport | None:
        try:
            return self.service.reconcile(item_id)
        except StoreError as e:
            logger.warning(f"⚠️ Could not check {item_id}: {e}")
            return None

    def extract(self) -> pd.DataFrame | None:
        logger.info("--- Starting Drift Audit ---")
        view = self.service.get_snapshot()
        if view.snapshot is None:
            logger.warning("⏳ No snapshot available yet; nothing to audit.")
            return None

        linked = [
            item.id
            for item in self.service.cache.items()
            if item.is_source or item.source_ref
        ]
        logger.info(f"Checking {len(linked)} linked items...")
        self.checked_at = utils.utcnow()

        with ThreadPoolExecutor(max_workers=max(1, self.service.detail_concurrency)) as pool:
            reports = list(pool.map(self._check, linked))

        rows = []
        for report in reports:
            if report is None:
                continue
            if report.status == ReconcileStatus.MISSING_BACK_REFERENCE:
                # One row per listed dependent that does not point back.
                for dependent_id in report.missing_back_references:
                    rows.append(
                        {
                            "item_id": dependent_id,
                            "source_id": report.source_id,
                            "status": report.status.value,
                            "detail": f"Listed by {report.source_id} but does not point back.",
                        }
                    )
            else:
                rows.append(
                    {
                        "item_id": report.item_id,
                        "source_id": report.source_id,
                        "status": report.status.value,
                        "detail": report.detail,
                    }
                )

        self.status_summary.update(
            {
                "Checked Items": len(linked),
                "Unreadable Items": sum(1 for r in reports if r is None),
                "Snapshot Version": view.snapshot.version,
            }
        )
        return pd.DataFrame(rows, columns=DRIFT_COLUMNS)

    def transform(self, df: pd.DataFrame) -> list[DriftRow] | None:
        drift = df[df["status"] != ReconcileStatus.CONSISTENT.value]
        # A link seen from both ends is reported once.
        drift = drift.drop_duplicates(subset=["item_id", "source_id", "status"])
        self.status_summary["Drifted Links"] = len(drift)

        if drift.empty:
            logger.info("✅ No drift found.")
            return []

        try:
            validated_data = [
                DriftRow(
                    item_id=row["item_id"],
                    source_id=row["source_id"],
                    status=row["status"],
                    detail=row["detail"],
                    checked_at=self.checked_at,
                )
                for row in drift.to_dict("records")
            ]
        except ValidationError as e:
            logger.error("❌ Data validation failed!")
            logger.error(e)
            return None
        logger.warning(f"⚠️ {len(validated_data)} drifted link(s) found.")
        return validated_data
