# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Calendar Writer - Handles all write operations to Microsoft Graph
"""
import logging
from datetime import datetime
from typing import Optional

import requests

from cal_ops.graph_http import GRAPH_BASE_URL, graph_request
from config import SyncConfig
from models import CalendarApiError
from utils.timezone import format_graph_datetime

logger = logging.getLogger(__name__)

# Suppress attendee notifications and keep times in UTC
PREFER_HEADERS = {'Prefer': 'outlook.timezone="UTC", outlook.send-notifications="false"'}


class CalendarWriter:
    """Handles writing calendar data to Microsoft Graph

    Methods raise on failure; retries are applied by the callers so that each
    logical operation is retried as a unit.
    """

    def __init__(self, auth_manager, config: SyncConfig, session: Optional[requests.Session] = None):
        self.auth = auth_manager
        self.config = config
        self.session = session or requests.Session()

    def _events_url(self, calendar_id: str) -> str:
        return f"{GRAPH_BASE_URL}/users/{self.config.calendar_mailbox}/calendars/{calendar_id}/events"

    def create_event(self, calendar_id: str, title: str, start: datetime, end: datetime) -> str:
        """Create a new event and return its Graph id"""
        payload = {
            'subject': title,
            'start': format_graph_datetime(start),
            'end': format_graph_datetime(end),
            'showAs': 'busy',
            'isReminderOn': False
        }

        response = graph_request(
            self.auth, self.session, 'POST', self._events_url(calendar_id),
            extra_headers=PREFER_HEADERS, json=payload,
            timeout=self.config.http_timeout_seconds
        )

        if response.status_code in [200, 201]:
            logger.info(f"✅ Created event: {title}")
            return response.json().get('id')

        logger.error(f"❌ Failed to create event: {response.status_code}")
        logger.error(f"Response: {response.text}")
        raise CalendarApiError(f"Event creation returned {response.status_code}", status_code=response.status_code)

    def update_event(self, calendar_id: str, event_id: str, title: str, start: datetime, end: datetime):
        """Update subject and time of an existing event"""
        payload = {
            'subject': title,
            'start': format_graph_datetime(start),
            'end': format_graph_datetime(end)
        }

        response = graph_request(
            self.auth, self.session, 'PATCH', f"{self._events_url(calendar_id)}/{event_id}",
            extra_headers=PREFER_HEADERS, json=payload,
            timeout=self.config.http_timeout_seconds
        )

        if response.status_code == 200:
            logger.info(f"✅ Updated event: {title}")
            return

        logger.error(f"❌ Failed to update event: {response.status_code}")
        logger.error(f"Response: {response.text}")
        raise CalendarApiError(f"Event update returned {response.status_code}", status_code=response.status_code)

    def delete_event(self, calendar_id: str, event_id: str):
        """Delete an event; an already deleted event counts as success"""
        response = graph_request(
            self.auth, self.session, 'DELETE', f"{self._events_url(calendar_id)}/{event_id}",
            extra_headers=PREFER_HEADERS,
            timeout=self.config.http_timeout_seconds
        )

        if response.status_code in [200, 204]:
            logger.info(f"✅ Deleted event ID: {event_id[:8]}...")
            return
        if response.status_code == 404:
            logger.warning(f"Event not found for deletion: {event_id[:8]}...")
            return

        logger.error(f"❌ Failed to delete event: {response.status_code}")
        logger.error(f"Response: {response.text}")
        raise CalendarApiError(f"Event deletion returned {response.status_code}", status_code=response.status_code)
