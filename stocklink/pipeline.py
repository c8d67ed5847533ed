import logging
from abc import ABC, abstractmethod
from typing import Any, Optional
import pandas as pd

from stocklink import data_handler

logger = logging.getLogger(__name__)


class DataPipeline(ABC):
    """
    Abstract base class for report pipelines (Relationships, Drift Audit).
    Follows an Extract -> Transform -> Load (ETL) pattern.
    """

    def __init__(self, report_type: str, test_mode: bool = False):
        self.report_type = report_type
        self.test_mode = test_mode
        # Free-form facts about the run, sent alongside the rows.
        self.status_summary: dict[str, Any] = {}
        self.saved_paths: list = []
        self.delivered = False

    def run(self) -> Optional[list[Any]]:
        """
        Orchestrates the pipeline execution.
        Returns the validated rows, or None when nothing could be produced.
        """
        logger.info(f"🚀 STEP: {self.report_type.upper()} REPORT")
        logger.info("-" * 30)

        # --- 1. EXTRACT ---
        raw_data = self.extract()
        if raw_data is None:
            logger.warning(f"⚠️ No data extracted for {self.report_type}.")
            return None

        # --- 2. TRANSFORM ---
        # Transform returns a list of Pydantic models (validated data)
        validated_data = self.transform(raw_data)
        if validated_data is None:
            logger.error(f"❌ Transformation failed for {self.report_type}.")
            return None

        # --- 3. LOAD ---
        self.status_summary["Rows"] = len(validated_data)
        self.load(validated_data)

        logger.info(f"✅ {self.report_type.replace('_', ' ').capitalize()} Pipeline Finished.\n")
        logger.info("=" * 60)
        return validated_data

    @abstractmethod
    def extract(self) -> pd.DataFrame | None:
        """
        Responsible for gathering the raw rows into a DataFrame.
        Should also populate self.status_summary.
        """
        pass

    @abstractmethod
    def transform(self, df: pd.DataFrame) -> list[Any] | None:
        """
        Responsible for normalization and validation.
        Returns a list of validated Pydantic models.
        """
        pass

    def load(self, validated_data: list[Any]):
        """
        Saves data to disk and posts to webhook.
        """
        # 1. Print Status Summary
        if self.status_summary:
            logger.info("\n--- Final Status Summary ---")
            for key, value in self.status_summary.items():
                logger.info(f"{key}: {value}")

        # 2. Save Outputs (CSV/JSON)
        if validated_data:
            self.saved_paths = data_handler.save_outputs(
                validated_data, f"{self.report_type}_report"
            )
        else:
            logger.warning("No data to save to disk.")

        # 3. Post to Webhook
        if not self.test_mode:
            self.delivered = data_handler.post_to_webhook(
                validated_data=validated_data,
                metadata=self.status_summary,
                report_type=self.report_type,
            )
        else:
            logger.info("🧪 Test Mode: Skipping webhook post.")
