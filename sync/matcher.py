# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Event Matcher - Finds the calendar event that represents a time record

The only link between a calendar event and a Toggl record is the trailing
"ID:<key>" token of the event title. A found event is brought up to date with
the record; the caller creates a new event when no match is reported.
"""
import logging
from enum import Enum
from typing import Callable, List, Optional

from config import SyncConfig
from models import (
    ID_TOKEN, CalendarEvent, InvalidTimestampError, TimeRecord,
    build_title, contains_key_token, ends_with_key_token, extract_key, record_key
)
from utils.retry import retry
from utils.timezone import months_before, utc_now

logger = logging.getLogger(__name__)


class MatchOutcome(Enum):
    """Result of matching one record against the calendar"""
    NOT_FOUND = "not_found"
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    ADOPTED = "adopted"
    UPDATE_FAILED = "update_failed"

    @property
    def is_synced(self) -> bool:
        return self in (MatchOutcome.UNCHANGED, MatchOutcome.UPDATED, MatchOutcome.ADOPTED)


class EventMatcher:
    """Matches records to existing events and reconciles drift"""

    def __init__(self, store, config: SyncConfig, notifier=None,
                 now: Callable = utc_now, sleep=None):
        self.store = store
        self.config = config
        self.notifier = notifier
        self._now = now
        self._sleep = sleep

    def _retry(self, operation, description: str):
        kwargs = {}
        if self._sleep is not None:
            kwargs['sleep'] = self._sleep
        return retry(
            operation,
            max_attempts=self.config.retry_count,
            delay_ms=self.config.retry_delay_ms,
            description=description,
            **kwargs
        )

    def start_run(self):
        """Forget events listed by an earlier run"""
        self.store.invalidate_cache()

    def match(self, record: TimeRecord, project_name: str = '') -> bool:
        """True when an up-to-date event for this record exists after the call"""
        return self.match_record(record, project_name).is_synced

    def find_candidates(self, key: str) -> List[CalendarEvent]:
        now = self._now()
        window_start = months_before(now, self.config.match_search_months)
        events = self.store.search_events(window_start, now, ID_TOKEN + key)
        logger.debug(f"Searching for events with {ID_TOKEN}{key}. Found {len(events)} events.")
        return events

    def match_record(self, record: TimeRecord, project_name: str = '') -> MatchOutcome:
        key = record_key(record, self.config.default_label)
        candidates = self.find_candidates(key)

        exact = next((e for e in candidates if extract_key(e.title) == key), None)
        if exact is None:
            legacy = next((e for e in candidates if contains_key_token(e.title, key)), None)
            if legacy is None:
                return MatchOutcome.NOT_FOUND
            return self._adopt(legacy, key)

        logger.debug(f"Matching event found: \"{exact.title}\"")
        return self._reconcile(exact, record, key, project_name)

    def _adopt(self, event: CalendarEvent, key: str) -> MatchOutcome:
        """Append the canonical suffix to a legacy title; times are left alone"""
        if ends_with_key_token(event.title, key):
            logger.debug(f"Event already carries the {ID_TOKEN}{key} suffix; no adoption needed")
            return MatchOutcome.UNCHANGED

        new_title = f"{event.title.rstrip()} {ID_TOKEN}{key}"

        try:
            self._retry(lambda: self.store.update_event(event, title=new_title), 'adopt_event')
        except Exception as e:
            logger.error(f"Error adopting event for {ID_TOKEN}{key} - {e}")
            self._notify(e, key)
            return MatchOutcome.UPDATE_FAILED

        logger.info(f"Adopted legacy event for {ID_TOKEN}{key}: \"{new_title}\"")
        return MatchOutcome.ADOPTED

    def _reconcile(self, event: CalendarEvent, record: TimeRecord, key: str, project_name: str) -> MatchOutcome:
        desired_title = build_title(record.description, project_name, key, self.config.default_label)
        new_start = record.start_time
        new_end = record.stop_time
        if new_start is None or new_end is None:
            raise InvalidTimestampError(f"Invalid times for record {key}: {record.start!r} - {record.stop!r}")

        title_needs_update = event.title != desired_title
        time_needs_update = event.start != new_start or event.end != new_end
        logger.debug(f"TitleNeedsUpdate: {title_needs_update}, TimeNeedsUpdate: {time_needs_update}")

        if not (title_needs_update or time_needs_update):
            logger.debug(f"No update needed for event {ID_TOKEN}{key}")
            return MatchOutcome.UNCHANGED

        try:
            self._retry(
                lambda: self.store.update_event(event, title=desired_title, start=new_start, end=new_end),
                'update_event'
            )
        except Exception as e:
            # The caller will create a fresh event; a duplicate may remain
            # until the next duplicate sweep.
            logger.error(f"Error updating event for {ID_TOKEN}{key} - {e}")
            self._notify(e, key)
            return MatchOutcome.UPDATE_FAILED

        logger.info(f"Updated event for {ID_TOKEN}{key}")
        return MatchOutcome.UPDATED

    def _notify(self, error: Exception, record_id: Optional[str]):
        if self.notifier is not None:
            self.notifier.notify(error, record_id)
