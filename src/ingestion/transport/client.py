"""
HTTP client for the usage metrics API.
"""

from datetime import datetime

import requests
import structlog

from ..errors import TransportError
from ..models import IngestionConfig, PollResponse, format_timestamp

logger = structlog.get_logger(__name__)


class MetricsAPIClient:
    """Blocking client for the polling and streaming endpoints"""

    def __init__(self, config: IngestionConfig, session: requests.Session | None = None):
        self.base_url = config.api_base_url.rstrip("/")
        self.timeout = config.request_timeout_seconds
        self.session = session or requests.Session()

    def fetch_metrics(self, since: datetime | None = None) -> PollResponse:
        """Fetch events newer than ``since`` (or a recent slice when omitted)

        Raises:
            TransportError: On network failure, non-2xx status or an invalid body
        """
        params = {"since": format_timestamp(since)} if since is not None else None
        url = f"{self.base_url}/metrics"

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request failed: {e}") from e

        if not response.ok:
            raise TransportError(f"HTTP {response.status_code}", status_code=response.status_code)

        try:
            result = PollResponse.from_dict(response.json())
        except ValueError as e:  # JSON decode errors and ParseError
            raise TransportError(f"Invalid poll response: {e}") from e

        if result.dropped:
            logger.warning("Dropped malformed events from poll response", dropped=result.dropped)
        return result

    def open_stream(self) -> requests.Response:
        """Open the server-sent events endpoint and return the streaming response"""
        url = f"{self.base_url}/stream"
        try:
            response = self.session.get(
                url,
                stream=True,
                timeout=(self.timeout, None),
                headers={"Accept": "text/event-stream", "Cache-Control": "no-cache"},
            )
        except requests.RequestException as e:
            raise TransportError(f"Stream connection failed: {e}") from e

        if not response.ok:
            response.close()
            raise TransportError(
                f"Stream connection failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def close(self) -> None:
        self.session.close()
