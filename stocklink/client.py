import logging
from typing import Any, Iterator, Optional
import requests

from . import settings
from .exceptions import TransportError

logger = logging.getLogger(__name__)


class PlatformClient:
    """
    Thin Admin GraphQL client for the commerce platform.
    Every request carries a bounded timeout; any failure to get a usable
    response (timeout, connection error, non-2xx, top-level GraphQL errors)
    surfaces as a TransportError.
    """

    def __init__(
        self,
        shop_domain: str = settings.SHOP_DOMAIN,
        access_token: str = settings.ACCESS_TOKEN,
        api_version: str = settings.API_VERSION,
        timeout: float = settings.REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = f"https://{shop_domain}/admin/api/{api_version}/graphql.json"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "X-Shopify-Access-Token": access_token,
                "Content-Type": "application/json",
            }
        )

    def execute(self, query: str, variables: Optional[dict[str, Any]] = None) -> dict:
        """Runs a query or mutation and returns its `data` payload."""
        payload = {"query": query, "variables": variables or {}}
        try:
            response = self.session.post(self.endpoint, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Request timed out after {self.timeout}s: {e}") from e
        except requests.exceptions.HTTPError as e:
            raise TransportError(
                f"Platform returned HTTP {response.status_code}", response.status_code
            ) from e
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError("Platform returned a non-JSON body") from e

        if body.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in body["errors"])
            raise TransportError(f"GraphQL errors: {messages}")
        return body.get("data") or {}

    def download_lines(self, url: str) -> Iterator[str]:
        """Streams a newline-delimited result file, one non-empty line at a time."""
        try:
            # Result files live on signed storage URLs; the shop token must not travel there.
            with requests.get(url, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                for line in response.iter_lines(decode_unicode=True):
                    if line:
                        yield line
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Could not download export result: {e}") from e
