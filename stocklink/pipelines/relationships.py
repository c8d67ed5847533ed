import logging
from datetime import datetime
import pandas as pd
from pydantic import ValidationError

from stocklink.pipeline import DataPipeline
from stocklink.schemas import Item, RelationshipRow
from stocklink.service import StockLinkService

logger = logging.getLogger(__name__)

ITEM_COLUMNS = ["id", "label", "sku", "quantity", "is_source", "dependent_ids", "ratio"]


def _item_row(item: Item) -> dict:
    label = f"{item.parent_title} - {item.title}" if item.parent_title else item.title
    return {
        "id": item.id,
        "label": label,
        "sku": item.sku,
        "quantity": item.inventory_quantity,
        "is_source": item.is_source,
        "dependent_ids": list(item.dependent_ids),
        "ratio": item.ratio,
    }


class RelationshipReportPipeline(DataPipeline):
    """One row per source/dependent link in the current catalog view."""

    def __init__(self, service: StockLinkService, test_mode: bool = False):
        super().__init__("relationships", test_mode=test_mode)
        self.service = service
        self.snapshot_date: datetime | None = None

    def extract(self) -> pd.DataFrame | None:
        logger.info("--- Requesting Catalog Snapshot ---")
        view = self.service.get_snapshot()
        self.status_summary["Export State"] = view.state.value

        if view.snapshot is None:
            if view.error:
                logger.error(f"❌ Snapshot unavailable: {view.error}")
            else:
                logger.warning("⏳ Catalog export in progress; run again shortly.")
            return None
        if view.stale:
            logger.warning("⚠️ Reporting from the previous snapshot while a new export runs.")

        snapshot = view.snapshot
        self.snapshot_date = snapshot.completed_at or snapshot.fetched_at
        limit_status = self.service.check_limit()

        self.status_summary.update(
            {
                "Snapshot Version": snapshot.version,
                "Snapshot Date": self.snapshot_date.isoformat(),
                "Synced Items": limit_status.count,
                "Limit": limit_status.limit if limit_status.limit is not None else "unlimited",
                "Over Limit By": limit_status.excess,
            }
        )
        if limit_status.over_limit:
            logger.warning(
                f"⚠️ {limit_status.count} synced items, plan allows {limit_status.limit}; "
                f"{limit_status.excess} must be unlinked."
            )

        items = self.service.cache.items()
        return pd.DataFrame([_item_row(item) for item in items], columns=ITEM_COLUMNS)

    def transform(self, df: pd.DataFrame) -> list[RelationshipRow] | None:
        logger.info("\n--- Building Source/Dependent Links ---")
        sources = df[df["is_source"].astype(bool)]
        if sources.empty:
            logger.info("No sources defined yet.")
            return []

        # A source with no dependents explodes into a single row with a NaN dependent.
        links = sources.explode("dependent_ids").rename(columns={"dependent_ids": "dependent_id"})
        lookup = df[["id", "label", "sku", "quantity", "ratio"]].rename(
            columns={
                "id": "dependent_id",
                "label": "dependent_title",
                "sku": "dependent_sku",
                "quantity": "dependent_quantity",
                "ratio": "dependent_ratio",
            }
        )
        merged = pd.merge(
            links.drop(columns=["ratio"]), lookup, on="dependent_id", how="left"
        )

        # Dependents missing from the snapshot keep their id with empty display data.
        merged["dependent_title"] = merged["dependent_title"].fillna("")
        merged["dependent_sku"] = merged["dependent_sku"].fillna("")
        merged["dependent_quantity"] = merged["dependent_quantity"].fillna(0).astype(int)
        merged["dependent_ratio"] = merged["dependent_ratio"].fillna(1).astype(int)
        merged = merged.sort_values(["label", "dependent_title"]).reset_index(drop=True)

        try:
            logger.info("Validating data against schema...")
            validated_data = [
                RelationshipRow(
                    source_id=row["id"],
                    source_title=row["label"],
                    source_sku=row["sku"],
                    source_quantity=int(row["quantity"]),
                    dependent_id=row["dependent_id"] if pd.notna(row["dependent_id"]) else None,
                    dependent_title=row["dependent_title"],
                    dependent_sku=row["dependent_sku"],
                    dependent_quantity=row["dependent_quantity"],
                    ratio=row["dependent_ratio"],
                    snapshot_date=self.snapshot_date,
                )
                for row in merged.to_dict("records")
            ]
            logger.info(f"✅ Data validation successful ({len(validated_data)} rows).")
        except ValidationError as e:
            logger.error("❌ Data validation failed!")
            logger.error(e)
            return None
        return validated_data
