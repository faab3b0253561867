"""Thin HTTP client for the upstream catalog sync API.

Handles bearer authentication, page request building and telemetry for the
paginated content listing endpoint.
"""

import logging
import time
import requests
from cinecatalog.config.retry import CATALOG_RETRY_POLICY
from cinecatalog.config.settings import CatalogApiSettings

logger = logging.getLogger(__name__)


class CatalogClient:
    """Client for the paginated content listing of the upstream catalog.

    Attributes:
        session (requests.Session): Persistent session for HTTP requests.
        api_url (str): The content listing endpoint.
        page_size (int): Items requested per page.
        timeout (float): Per-request timeout in seconds.
    """

    def __init__(self, settings: CatalogApiSettings):
        """Initializes the CatalogClient from explicit settings.

        Args:
            settings: Token, endpoint URL, page size and timeout.
        """

        self.session = requests.Session()
        self.api_url = settings.api_url.rstrip("/")
        self.page_size = settings.page_size
        self.timeout = settings.timeout_seconds

        self.session.headers.update(
            {
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": f"Bearer {settings.api_token}",
            }
        )

        logger.info("CatalogClient initialized with api_url=%s", self.api_url)

    @CATALOG_RETRY_POLICY
    def fetch_page(self, page: int) -> dict:
        """Fetches one page of the content listing.

        Wrapped by a retry policy for transient network and server-side
        errors. Timeouts and client errors are raised immediately.

        Args:
            page: 1-based page number.

        Returns:
            dict: The parsed JSON response, ``{"data": [...], "meta": {...}}``.

        Raises:
            requests.exceptions.RequestException: If the request fails
                after all retry attempts are exhausted.
        """

        body = {
            "pagination": {
                "type": "page",
                "order": "DESC",
                "sortBy": "year",
                "pageSize": self.page_size,
                "page": page,
            }
        }

        start_ts = time.perf_counter()

        try:
            logger.debug("CATALOG_REQUEST_START page=%d page_size=%d", page, self.page_size)
            response = self.session.post(self.api_url, json=body, timeout=self.timeout)
            response.raise_for_status()

            duration = (time.perf_counter() - start_ts) * 1000
            logger.info(
                "CATALOG_REQUEST_SUCCESS page=%d status=%s latency_ms=%.2f",
                page,
                response.status_code,
                duration,
            )

            return response.json()

        except requests.exceptions.RequestException as e:
            duration = (time.perf_counter() - start_ts) * 1000
            logger.error(
                "CATALOG_REQUEST_FAILED page=%d latency_ms=%.2f error=%s",
                page,
                duration,
                str(e),
            )

            raise
