# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Microsoft OAuth - App-only (client credentials) authentication for Graph
"""
import logging
import threading
from datetime import timedelta
from typing import Optional

import requests

from config import SyncConfig
from utils.timezone import utc_now

logger = logging.getLogger(__name__)

GRAPH_SCOPE = 'https://graph.microsoft.com/.default'


class GraphAuthError(Exception):
    """Raised when no Graph access token can be obtained"""


class MicrosoftAuth:
    """Acquires and caches an application access token for Microsoft Graph"""

    def __init__(self, config: SyncConfig, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()
        self._lock = threading.Lock()
        self._access_token = None
        self._expires_at = None

    def is_authenticated(self) -> bool:
        """Check that credentials are configured"""
        return bool(self.config.tenant_id and self.config.client_id and self.config.client_secret)

    def _is_token_expired(self) -> bool:
        if not self._access_token or not self._expires_at:
            return True
        return utc_now() >= (self._expires_at - timedelta(minutes=5))

    def ensure_valid_token(self) -> bool:
        """Ensure we have a valid access token"""
        with self._lock:
            if not self._is_token_expired():
                return True
        logger.info("Token expired or missing, refreshing...")
        return self.refresh_access_token()

    def get_headers(self) -> dict:
        """
        Get authorization headers for API calls

        Raises:
            GraphAuthError: when no token could be obtained
        """
        if not self.ensure_valid_token():
            raise GraphAuthError("Cannot get headers - no valid token")

        with self._lock:
            return {
                'Authorization': f'Bearer {self._access_token}',
                'Content-Type': 'application/json'
            }

    def refresh_access_token(self) -> bool:
        """Request a new access token with the client credentials grant"""
        if not self.is_authenticated():
            logger.error("Graph credentials are not configured")
            return False

        token_url = f"https://login.microsoftonline.com/{self.config.tenant_id}/oauth2/v2.0/token"
        data = {
            'client_id': self.config.client_id,
            'client_secret': self.config.client_secret,
            'grant_type': 'client_credentials',
            'scope': GRAPH_SCOPE
        }

        try:
            response = self.session.post(token_url, data=data, timeout=self.config.http_timeout_seconds)
        except requests.exceptions.RequestException as e:
            logger.error(f"Token refresh exception: {e}")
            return False

        if response.status_code != 200:
            logger.error(f"Token refresh failed: {response.status_code} - {response.text}")
            return False

        tokens = response.json()
        expires_in = int(tokens.get('expires_in', 3600))
        with self._lock:
            self._access_token = tokens.get('access_token')
            self._expires_at = utc_now() + timedelta(seconds=expires_in)

        logger.info(f"Token refreshed successfully. Expires in {expires_in}s")
        return bool(self._access_token)

    def clear_tokens(self):
        """Forget the cached token so the next call re-authenticates"""
        with self._lock:
            self._access_token = None
            self._expires_at = None
