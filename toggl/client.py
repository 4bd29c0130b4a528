# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Toggl Client - Fetches time entries and project metadata from the Toggl Track API
"""
import logging
import time
from typing import List, Optional

import requests

from config import SyncConfig
from models import ProjectInfo, TimeRecord, TogglApiError
from utils.logger import StructuredLogger
from utils.retry import retry

logger = logging.getLogger(__name__)


class TogglClient:
    """Read-only client for the Toggl Track v9 API"""

    def __init__(self, config: SyncConfig, session: Optional[requests.Session] = None,
                 sleep=time.sleep):
        self.config = config
        self.base_url = f"{config.toggl_api_hostname}/api/v9"
        self.session = session or requests.Session()
        self._sleep = sleep
        self.structured_logger = StructuredLogger(__name__)

        if config.toggl_basic_auth:
            self.session.headers['Authorization'] = f"Basic {config.toggl_basic_auth}"
        elif config.toggl_api_token:
            self.session.auth = (config.toggl_api_token, 'api_token')
        else:
            logger.warning("No Toggl credentials configured")

    def _retry(self, operation, description: str):
        return retry(
            operation,
            max_attempts=self.config.retry_count,
            delay_ms=self.config.retry_delay_ms,
            sleep=self._sleep,
            description=description
        )

    def _get(self, path: str, params: dict = None) -> requests.Response:
        url = f"{self.base_url}{path}"
        started = time.monotonic()
        try:
            response = self.session.get(url, params=params, timeout=self.config.http_timeout_seconds)
        except requests.exceptions.RequestException as e:
            self.structured_logger.log_api_call('GET', path, error=str(e))
            raise
        self.structured_logger.log_api_call(
            'GET', path,
            status_code=response.status_code,
            duration_ms=(time.monotonic() - started) * 1000
        )
        return response

    def fetch_records(self, start_iso: str, end_iso: str) -> Optional[List[TimeRecord]]:
        """
        Fetch time entries in [start_iso, end_iso]

        Returns:
            List of records, or None when the API answered 200 with something
            that is not a JSON list
        """
        def _fetch():
            logger.debug(f"Fetching time entries from {start_iso} to {end_iso}")
            response = self._get('/me/time_entries', params={'start_date': start_iso, 'end_date': end_iso})

            if response.status_code != 200:
                logger.error(f"Toggl API error {response.status_code}: {response.text}")
                raise TogglApiError(
                    f"Toggl API returned status code {response.status_code}",
                    status_code=response.status_code
                )

            try:
                parsed = response.json()
            except ValueError:
                logger.error("Toggl API returned a body that is not JSON")
                return None

            if not isinstance(parsed, list):
                logger.error("Toggl API returned non-array response")
                return None

            return [TimeRecord.from_api(entry) for entry in parsed if isinstance(entry, dict)]

        return self._retry(_fetch, 'fetch_records')

    def fetch_project(self, workspace_id: Optional[str], project_id: Optional[str]) -> ProjectInfo:
        """Fetch project metadata; any failure yields an empty ProjectInfo"""
        if not workspace_id or not project_id:
            return ProjectInfo()

        def _fetch():
            response = self._get(f"/workspaces/{workspace_id}/projects/{project_id}")
            if response.status_code != 200:
                logger.info(f"Project lookup {workspace_id}/{project_id} returned {response.status_code}")
                return ProjectInfo()
            return ProjectInfo.from_api(response.json())

        try:
            return self._retry(_fetch, 'fetch_project')
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.info(f"Project lookup {workspace_id}/{project_id} failed: {e}")
            return ProjectInfo()

    def record_exists(self, record_id: str) -> bool:
        """
        Check whether a time entry still exists

        Returns:
            True on 200, False on 404

        Raises:
            TogglApiError: any other status, after exhausting retries
        """
        def _check():
            response = self._get(f"/me/time_entries/{record_id}")
            if response.status_code == 200:
                return True
            if response.status_code == 404:
                return False
            logger.error(f"Unexpected response code when checking entry {record_id}: {response.status_code}")
            raise TogglApiError(
                f"Unexpected response code: {response.status_code}",
                status_code=response.status_code
            )

        return self._retry(_check, 'record_exists')
