"""
Roster source client.

Fetches the personnel roster report (JSON) from the HR system with an
authenticated GET.
"""

import logging
from typing import Dict, List, Any
from urllib.parse import urlparse

from roster_sync.http_client import HTTPClient, HTTPClientError

logger = logging.getLogger(__name__)


class RosterFetchError(Exception):
    """Raised when the roster cannot be retrieved or parsed."""

    def __init__(self, message: str, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class RosterSource(HTTPClient):
    """
    HTTP client for the roster report endpoint.

    Config keys (``roster`` section):
        url: Full report URL including query string
        username / password: Basic auth credentials
        entries_key: Top-level key holding the report entries (default Report_Entry)
    """

    def __init__(self, config: Dict[str, Any]):
        parsed = urlparse(config['url'])
        self.report_path = parsed.path or '/'
        if parsed.query:
            self.report_path += '?' + parsed.query
        self.entries_key = config.get('entries_key', 'Report_Entry')

        client_config = dict(config)
        client_config.setdefault('name', 'roster')
        client_config['base_url'] = f"{parsed.scheme}://{parsed.netloc}"
        client_config['auth'] = {
            'method': 'basic',
            'username': config.get('username'),
            'password': config.get('password'),
        }
        super().__init__(client_config)

    def fetch_entries(self) -> List[Dict[str, Any]]:
        """
        Retrieve the raw roster entries.

        Returns:
            List of report entry dictionaries

        Raises:
            RosterFetchError: If the request fails or the document has no entry list
        """
        logger.info(f"Fetching roster from {self.host}")
        try:
            document = self.request('GET', self.report_path)
        except HTTPClientError as e:
            raise RosterFetchError(f"Roster request failed: {e}", e.status_code)
        finally:
            self.close_connection()

        if not isinstance(document, dict):
            raise RosterFetchError("Roster response is not a JSON object")

        entries = document.get(self.entries_key)
        if not isinstance(entries, list):
            raise RosterFetchError(f"Roster response has no '{self.entries_key}' list")

        logger.info(f"Fetched {len(entries)} roster entries")
        return entries
