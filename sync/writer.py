# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Event Writer - Creates calendar events for records that have none yet
"""
import logging

from models import CalendarEvent, InvalidTimestampError
from utils.timezone import parse_timestamp

logger = logging.getLogger(__name__)


class EventWriter:
    """Validates timestamps and issues a single create call"""

    def __init__(self, store):
        self.store = store

    def create(self, title: str, start_iso: str, end_iso: str) -> CalendarEvent:
        """
        Create an event titled `title` spanning [start_iso, end_iso]

        Raises:
            InvalidTimestampError: when either timestamp does not parse
            CalendarNotFoundError: when the target calendar is misconfigured
        """
        logger.debug(f"create called with title: \"{title}\", start: \"{start_iso}\", end: \"{end_iso}\"")

        start = parse_timestamp(start_iso)
        if start is None:
            logger.error(f"Invalid start date: \"{start_iso}\"")
            raise InvalidTimestampError(f"Invalid start date: \"{start_iso}\"")
        end = parse_timestamp(end_iso)
        if end is None:
            logger.error(f"Invalid end date: \"{end_iso}\"")
            raise InvalidTimestampError(f"Invalid end date: \"{end_iso}\"")

        event = self.store.create_event(title, start, end)
        logger.info(f"Created event: \"{title}\" from {start_iso} to {end_iso}")
        return event
