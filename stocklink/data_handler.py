import json
import logging
from pathlib import Path
from typing import Any, Optional
import pandas as pd
import requests
from pydantic import BaseModel

from . import settings
from . import utils

logger = logging.getLogger(__name__)


def save_outputs(
    validated_data: list[BaseModel],
    filename_base: str,
    output_dir: Optional[Path] = None,
) -> list[Path]:
    """Saves the rows to CSV and conditionally to JSON, with dated filenames."""
    output_dir = output_dir or settings.OUTPUT_DIR
    output_dir.mkdir(parents=True, exist_ok=True)
    date_suffix = utils.get_date_suffix_for_filename()

    csv_path = output_dir / f"{settings.REPORT_FILENAME_BASE}_{filename_base}_{date_suffix}.csv"
    json_path = output_dir / f"{settings.REPORT_FILENAME_BASE}_{filename_base}_{date_suffix}.json"

    # Column headers come from the schema aliases.
    rows = [item.model_dump(mode="json", by_alias=True) for item in validated_data]
    pd.DataFrame(rows).to_csv(csv_path, index=False)
    logger.info(f"✅ Report saved to: {csv_path}")
    saved = [csv_path]

    if settings.SAVE_JSON_OUTPUT:
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump(rows, f, indent=2, default=str)
        logger.info(f"✅ JSON output saved to: {json_path}")
        saved.append(json_path)
    else:
        logger.info("INFO: Skipping JSON file save as per configuration.")
    return saved


def post_to_webhook(
    validated_data: list[BaseModel], metadata: dict[str, Any], report_type: str
) -> bool:
    """
    Posts the rows AND the run metadata to the webhook.
    Returns True when the webhook accepted the payload.
    """
    if not settings.WEBHOOK_URL:
        logger.warning("⚠️ WEBHOOK_URL not set. Skipping webhook post.")
        return False

    logger.info(f"🚀 Posting {report_type} data to webhook: {settings.WEBHOOK_URL}")

    payload = {
        "reportType": report_type,
        "reportData": [item.model_dump(mode="json", by_alias=True) for item in validated_data],
        "metadata": metadata,
    }

    try:
        response = requests.post(
            settings.WEBHOOK_URL,
            data=json.dumps(payload, default=str),
            headers={"Content-Type": "application/json"},
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
        logger.info("✅ Data successfully posted to webhook.")
        return True
    except requests.exceptions.RequestException as e:
        logger.error(f"❌ Error posting to webhook: {e}")
        return False
