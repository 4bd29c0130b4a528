# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Calendar Store - The single target calendar as seen by the sync engine
"""
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from cal_ops.reader import CalendarReader
from cal_ops.writer import CalendarWriter
from config import SyncConfig
from models import CalendarEvent, CalendarNotFoundError

logger = logging.getLogger(__name__)


class _Listing:
    """calendarView result held for text searches within its range"""

    def __init__(self, range_start: datetime, range_end: datetime, events: List[CalendarEvent], expires: float):
        self.range_start = range_start
        self.range_end = range_end
        self.events = events
        self.expires = expires

    def covers(self, range_start: datetime, range_end: datetime) -> bool:
        return self.range_start <= range_start and range_end <= self.range_end

    def overlaps(self, event: CalendarEvent) -> bool:
        return event.start < self.range_end and event.end > self.range_start


class CalendarStore:
    """
    Event store with a text search capability, bound to one calendar

    Searches are served from one calendarView listing kept for
    search_cache_seconds, so matching a batch of records lists the search
    window once instead of once per record. Writes made through the store are
    applied to the kept listing; invalidate_cache() drops it.
    """

    def __init__(self, reader: CalendarReader, writer: CalendarWriter, config: SyncConfig,
                 clock: Callable[[], float] = time.monotonic):
        self.reader = reader
        self.writer = writer
        self.config = config
        self._clock = clock
        self._listing: Optional[_Listing] = None

    def calendar_id(self) -> str:
        """
        Resolve the target calendar

        Raises:
            CalendarNotFoundError: when the configured calendar does not exist
        """
        if self.config.calendar_id:
            return self.config.calendar_id

        calendar_id = self.reader.find_calendar_id(self.config.calendar_name)
        if not calendar_id:
            logger.error(f"Invalid calendar configuration: '{self.config.calendar_name}' not found")
            raise CalendarNotFoundError(f"Calendar '{self.config.calendar_name}' not found")
        return calendar_id

    def invalidate_cache(self):
        if self._listing is not None:
            logger.debug(f"Dropping cached listing of {len(self._listing.events)} events")
        self._listing = None

    def create_event(self, title: str, start: datetime, end: datetime) -> CalendarEvent:
        event_id = self.writer.create_event(self.calendar_id(), title, start, end)
        event = CalendarEvent(event_id=event_id, title=title, start=start, end=end)
        if self._listing is not None and self._listing.overlaps(event):
            self._listing.events.append(event)
        return event

    def list_events(self, range_start: datetime, range_end: datetime) -> List[CalendarEvent]:
        return self.reader.get_events(self.calendar_id(), range_start, range_end)

    def search_events(self, range_start: datetime, range_end: datetime, text_query: str) -> List[CalendarEvent]:
        ttl = self.config.search_cache_seconds
        if ttl <= 0:
            return self.reader.search_events(self.calendar_id(), range_start, range_end, text_query)

        listing = self._listing
        if listing is None or self._clock() >= listing.expires or not listing.covers(range_start, range_end):
            # Searches move forward with the clock; list ahead by one cache lifetime
            listing_end = range_end + timedelta(seconds=ttl)
            events = self.reader.get_events(self.calendar_id(), range_start, listing_end)
            listing = _Listing(range_start, listing_end, events, self._clock() + ttl)
            self._listing = listing
            logger.debug(f"Cached listing of {len(events)} events for text searches")

        return [
            event for event in listing.events
            if text_query in (event.title or '') and event.start < range_end and event.end > range_start
        ]

    def update_event(self, event: CalendarEvent, title: Optional[str] = None,
                     start: Optional[datetime] = None, end: Optional[datetime] = None):
        """Apply title and/or time changes; the event object is updated on success"""
        new_title = event.title if title is None else title
        new_start = event.start if start is None else start
        new_end = event.end if end is None else end

        self.writer.update_event(self.calendar_id(), event.event_id, new_title, new_start, new_end)

        targets = [event]
        if self._listing is not None:
            targets += [e for e in self._listing.events if e.event_id == event.event_id and e is not event]
        for target in targets:
            target.title = new_title
            target.start = new_start
            target.end = new_end

    def delete_event(self, event: CalendarEvent):
        self.writer.delete_event(self.calendar_id(), event.event_id)
        if self._listing is not None:
            self._listing.events = [e for e in self._listing.events if e.event_id != event.event_id]
