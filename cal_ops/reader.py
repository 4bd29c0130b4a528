# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Calendar Reader - Handles all read operations from Microsoft Graph
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import requests

from cal_ops.graph_http import GRAPH_BASE_URL, graph_request
from config import SyncConfig
from models import CalendarApiError, CalendarEvent
from utils.retry import retry_fixed
from utils.timezone import format_graph_datetime, parse_graph_datetime, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

EVENT_FIELDS = 'id,subject,start,end,lastModifiedDateTime'
# nextLink pages followed per listing
MAX_PAGES = 50


class CalendarReader:
    """Handles reading calendar data from Microsoft Graph"""

    def __init__(self, auth_manager, config: SyncConfig, session: Optional[requests.Session] = None):
        self.auth = auth_manager
        self.config = config
        self.session = session or requests.Session()
        # calendar name -> (id, expires_at)
        self._calendar_ids: Dict[str, tuple] = {}

    @property
    def mailbox_url(self) -> str:
        return f"{GRAPH_BASE_URL}/users/{self.config.calendar_mailbox}"

    @retry_fixed(max_attempts=3, delay_ms=1000, retry_on=(requests.exceptions.RequestException,))
    def list_calendars(self) -> Optional[List[Dict]]:
        """Calendars of the sync mailbox, or None when Graph refuses"""
        response = graph_request(
            self.auth, self.session, 'GET', f"{self.mailbox_url}/calendars",
            params={'$select': 'id,name'},
            timeout=self.config.http_timeout_seconds
        )

        if response.status_code != 200:
            logger.error(f"Calendar listing for {self.config.calendar_mailbox} returned {response.status_code}: {response.text[:200]}")
            return None

        calendars = response.json().get('value', [])
        logger.debug(f"Mailbox {self.config.calendar_mailbox} has {len(calendars)} calendars")
        return calendars

    def find_calendar_id(self, calendar_name: str) -> Optional[str]:
        """Resolve a calendar name to its Graph id; hits are remembered for an hour"""
        cached = self._calendar_ids.get(calendar_name)
        if cached and utc_now() < cached[1]:
            return cached[0]

        match = next(
            (c for c in self.list_calendars() or [] if c.get('name') == calendar_name),
            None
        )
        if match is None:
            logger.warning(f"No calendar named '{calendar_name}' in {self.config.calendar_mailbox}")
            return None

        self._calendar_ids[calendar_name] = (match['id'], utc_now() + timedelta(hours=1))
        logger.info(f"Target calendar '{calendar_name}' resolved to {match['id']}")
        return match['id']

    def get_events(self, calendar_id: str, range_start: datetime, range_end: datetime) -> List[CalendarEvent]:
        """
        Get event instances in a time range via the calendarView endpoint

        Raises:
            CalendarApiError: on any non-200 page
        """
        url = f"{self.mailbox_url}/calendars/{calendar_id}/calendarView"
        params = {
            'startDateTime': format_graph_datetime(range_start)['dateTime'] + 'Z',
            'endDateTime': format_graph_datetime(range_end)['dateTime'] + 'Z',
            '$select': EVENT_FIELDS,
            '$top': 250
        }

        events = []
        pages = 0
        while url and pages < MAX_PAGES:
            response = graph_request(
                self.auth, self.session, 'GET', url,
                extra_headers={'Prefer': 'outlook.timezone="UTC"'},
                params=params if pages == 0 else None,
                timeout=self.config.http_timeout_seconds
            )

            if response.status_code != 200:
                logger.error(f"calendarView page {pages + 1} returned {response.status_code}: {response.text[:200]}")
                raise CalendarApiError(
                    f"Graph calendarView returned {response.status_code}",
                    status_code=response.status_code
                )

            data = response.json()
            for raw in data.get('value', []):
                event = self._to_event(raw)
                if event is not None:
                    events.append(event)

            pages += 1
            url = data.get('@odata.nextLink')

        logger.debug(f"calendarView returned {len(events)} events in {pages} pages")
        return events

    def search_events(self, calendar_id: str, range_start: datetime, range_end: datetime,
                      text_query: str) -> List[CalendarEvent]:
        """Events in range whose subject contains `text_query` (case-sensitive)"""
        return [
            event for event in self.get_events(calendar_id, range_start, range_end)
            if text_query in (event.title or '')
        ]

    @staticmethod
    def _to_event(raw: Dict) -> Optional[CalendarEvent]:
        start = parse_graph_datetime(raw.get('start'))
        end = parse_graph_datetime(raw.get('end'))
        if start is None or end is None:
            logger.warning(f"Skipping event with unparseable times: {raw.get('subject')}")
            return None
        return CalendarEvent(
            event_id=raw.get('id'),
            title=raw.get('subject') or '',
            start=start,
            end=end,
            last_updated=parse_timestamp(raw.get('lastModifiedDateTime')),
            raw=raw
        )

