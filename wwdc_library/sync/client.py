"""
HTTP access to the config, catalog, schedule and transcript services.

Every fetch returns the decoded JSON document or raises
NetworkEmptyResponse; callers decide how much of the sync to abandon.
"""

import logging
from typing import Optional

import requests

from wwdc_library.config import get_settings
from wwdc_library.sync.adapters import SyncError

logger = logging.getLogger(__name__)


class NetworkEmptyResponse(SyncError):
    """A request produced no usable payload."""


class ServiceClient:
    """
    Fetches JSON documents from the WWDC services.

    One requests.Session is shared by all fetches; it is safe to use from
    the sync thread and the indexing workers at the same time.
    """

    def __init__(
        self,
        index_url: Optional[str] = None,
        transcript_base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            index_url: URL of the app config document (or from settings)
            transcript_base_url: Base URL of the transcript service (or from settings)
            timeout: Per-request timeout in seconds (or from settings)
            session: Pre-configured requests session
        """
        settings = get_settings()
        self.index_url = index_url or settings.index_url
        self.transcript_base_url = transcript_base_url or settings.transcript_base_url
        self.timeout = timeout or settings.http_timeout_seconds

        self.session = session or requests.Session()

    def get_json(self, url: str, headers: Optional[dict] = None) -> dict:
        """
        GET a URL and decode its JSON body.

        Raises:
            NetworkEmptyResponse: on transport errors, non-200 status, or a
                body that is empty or not a JSON object
        """
        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkEmptyResponse(f"Request error for {url}: {e}") from e

        if response.status_code != 200:
            raise NetworkEmptyResponse(
                f"HTTP {response.status_code} from {url}: {response.text[:200]}"
            )

        if not response.content:
            raise NetworkEmptyResponse(f"No data returned from {url}")

        try:
            data = response.json()
        except ValueError as e:
            raise NetworkEmptyResponse(f"Invalid JSON from {url}: {e}") from e

        if not isinstance(data, dict):
            raise NetworkEmptyResponse(f"Unexpected document type from {url}")

        return data

    def fetch_config(self) -> dict:
        return self.get_json(self.index_url)

    def fetch_catalog(self, videos_url: str) -> dict:
        return self.get_json(videos_url)

    def fetch_schedule(self, sessions_url: str) -> dict:
        return self.get_json(sessions_url)

    def transcript_url(self, year: int, session_id: int) -> str:
        return f"{self.transcript_base_url.rstrip('/')}/{year}/sessions/{session_id}"

    def fetch_transcript(self, year: int, session_id: int) -> dict:
        return self.get_json(
            self.transcript_url(year, session_id),
            headers={"Accept": "application/json"},
        )
