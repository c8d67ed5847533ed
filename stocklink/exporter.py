import json
import logging
from abc import ABC, abstractmethod
from typing import Iterator, Optional

from .attributes import relationship_selection
from .client import PlatformClient
from .exceptions import ExportError
from .schemas import ExportState, ExportStatus

logger = logging.getLogger(__name__)


class BulkExporter(ABC):
    """Asynchronous whole-catalog export job on the platform."""

    @abstractmethod
    def start_export(self) -> str:
        """Starts a new export job and returns its handle."""
        pass

    @abstractmethod
    def poll_status(self, job_id: Optional[str] = None) -> ExportStatus:
        """
        Returns the status of the given job, or of the platform's current job
        when no handle is known. A shop that never ran one reports NONE.
        """
        pass

    @abstractmethod
    def fetch_result(self, result_url: str) -> Iterator[dict]:
        """Yields the flat records of a completed job."""
        pass


def parse_jsonl(lines) -> Iterator[dict]:
    """Parses newline-delimited JSON, skipping lines that do not decode to objects."""
    for line_number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except ValueError as e:
            logger.error(f"❌ Skipping malformed export line {line_number}: {e}")
            continue
        if isinstance(record, dict):
            yield record


def build_export_query() -> str:
    """The catalog query the export job runs: containers, their images, attributes and items."""
    return f"""
    {{
      products {{
        edges {{
          node {{
            id
            title
            createdAt
            images(first: 1) {{ edges {{ node {{ id originalSrc }} }} }}
            metafields(first: 30) {{ edges {{ node {{ namespace key value }} }} }}
            variants(first: 100) {{
              edges {{
                node {{
                  id
                  title
                  sku
                  inventoryQuantity
                  image {{ id originalSrc }}
                  {relationship_selection()}
                }}
              }}
            }}
          }}
        }}
      }}
    }}
    """


START_EXPORT_MUTATION = """
mutation StartCatalogExport($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

CURRENT_EXPORT_QUERY = """
query {
  currentBulkOperation {
    id status errorCode createdAt completedAt objectCount fileSize url
  }
}
"""

EXPORT_BY_ID_QUERY = """
query GetCatalogExport($id: ID!) {
  node(id: $id) {
    ... on BulkOperation {
      id status errorCode createdAt completedAt objectCount fileSize url
    }
  }
}
"""


class ShopifyBulkExporter(BulkExporter):
    def __init__(self, client: Optional[PlatformClient] = None):
        self.client = client or PlatformClient()

    def start_export(self) -> str:
        data = self.client.execute(START_EXPORT_MUTATION, {"query": build_export_query()})
        payload = data.get("bulkOperationRunQuery") or {}
        errors = payload.get("userErrors") or []
        if errors:
            logger.error(f"❌ Platform refused to start the export: {errors}")
            raise ExportError("; ".join(e.get("message", "") for e in errors))
        operation = payload.get("bulkOperation") or {}
        if not operation.get("id"):
            raise ExportError("Export started but no job handle was returned.")
        logger.info(f"🚀 Started catalog export {operation['id']} ({operation.get('status')})")
        return operation["id"]

    def poll_status(self, job_id: Optional[str] = None) -> ExportStatus:
        if job_id:
            operation = self.client.execute(EXPORT_BY_ID_QUERY, {"id": job_id}).get("node")
        else:
            operation = self.client.execute(CURRENT_EXPORT_QUERY).get("currentBulkOperation")
        if not operation:
            return ExportStatus(state=ExportState.NONE)
        return ExportStatus.model_validate(operation)

    def fetch_result(self, result_url: str) -> Iterator[dict]:
        return parse_jsonl(self.client.download_lines(result_url))
