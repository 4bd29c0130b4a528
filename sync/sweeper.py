# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Event Sweepers - Auxiliary passes over existing calendar events

remove_duplicates keeps one event per identifier key; sweep_deleted removes
events whose Toggl record no longer exists. Both run under the run lock.
"""
import logging
from collections import defaultdict
from contextlib import nullcontext
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from config import SyncConfig
from models import ID_TOKEN, CalendarEvent, extract_key, is_composite_key
from utils.retry import retry
from utils.timezone import format_utc_iso, months_before, utc_now

logger = logging.getLogger(__name__)

TEST_DUPLICATE_TITLE = "Duplicate test event ID:654321"

SWEEP_RANGES = ('short', 'long')


class EventSweeper:
    """Duplicate and deletion sweeps for the target calendar"""

    def __init__(self, store, fetcher, config: SyncConfig, lock=None,
                 now: Callable[[], datetime] = utc_now, sleep=None):
        self.store = store
        self.fetcher = fetcher
        self.config = config
        self.lock = lock
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

    def _locked(self):
        if self.lock is None:
            return nullcontext()
        return self.lock.hold(self.config.lock_timeout_seconds)

    # =========================================================================
    # DUPLICATES
    # =========================================================================

    def remove_duplicates(self, months: int = 3, prefer_latest: bool = False) -> Dict:
        """
        Keep one event per identifier key in the trailing `months` window

        By default the first event in the store's enumeration order is kept;
        with prefer_latest the most recently updated one is kept instead.
        """
        logger.info("🧹 Starting duplicate event cleanup...")
        with self._locked():
            now = self._now()
            events = self._retry(
                lambda: self.store.list_events(months_before(now, months), now),
                'list_events'
            )
            logger.info(f"📊 Found {len(events)} events in the last {months} months")

            groups = self._group_by_key(events)
            duplicate_groups = {key: group for key, group in groups.items() if len(group) > 1}
            logger.info(f"🔍 Found {len(duplicate_groups)} keys with duplicates")

            stats = {'scanned': len(events), 'duplicates': 0, 'deleted': 0}
            for key, group in duplicate_groups.items():
                keep, extras = self._choose_survivor(group, prefer_latest)
                logger.info(f"✅ Keeping \"{keep.title}\" for {ID_TOKEN}{key}")
                stats['duplicates'] += len(extras)
                for event in extras:
                    self._retry(lambda e=event: self.store.delete_event(e), 'delete_duplicate')
                    stats['deleted'] += 1
                    logger.info(f"🗑️ Deleted duplicate event for {ID_TOKEN}{key}")

        logger.info(f"Duplicate cleanup completed: {stats['deleted']} of {stats['scanned']} events removed")
        return stats

    def _group_by_key(self, events: List[CalendarEvent]) -> Dict[str, List[CalendarEvent]]:
        groups = defaultdict(list)
        for event in events:
            key = extract_key(event.title)
            if key:
                groups[key].append(event)
        return dict(groups)

    def _choose_survivor(self, group: List[CalendarEvent], prefer_latest: bool):
        if not prefer_latest:
            return group[0], group[1:]

        # Events without a last-updated stamp rank lowest; ties keep enumeration order
        ordered = sorted(
            group,
            key=lambda e: (e.last_updated is not None, e.last_updated or datetime.min),
            reverse=True
        )
        keep = ordered[0]
        return keep, [e for e in group if e is not keep]

    def create_test_duplicates(self) -> List[CalendarEvent]:
        """Create two events sharing one identifier, for exercising remove_duplicates"""
        now = self._now()
        created = []
        for offset_hours in (1, 3):
            start = now + timedelta(hours=offset_hours)
            end = start + timedelta(hours=1)
            created.append(self.store.create_event(TEST_DUPLICATE_TITLE, start, end))
            logger.info(f"Created test duplicate \"{TEST_DUPLICATE_TITLE}\" at {format_utc_iso(start)}")
        return created

    # =========================================================================
    # DELETIONS
    # =========================================================================

    def range_start(self, range_name: str) -> datetime:
        """Start of a named sweep range: short = 1 day, long = 1 calendar month"""
        now = self._now()
        if range_name == 'short':
            return now - timedelta(days=1)
        if range_name == 'long':
            return months_before(now, 1)
        raise ValueError(f"Unknown sweep range: {range_name!r}")

    def sweep_deleted_short(self) -> Dict:
        return self.sweep_deleted(self.range_start('short'))

    def sweep_deleted_long(self) -> Dict:
        return self.sweep_deleted(self.range_start('long'))

    def sweep_deleted(self, range_start: datetime, range_end: Optional[datetime] = None) -> Dict:
        """
        Delete events whose Toggl record is confirmed gone (404)

        Lookup errors other than 404 propagate after retries and leave the
        event in place. Composite keys cannot be looked up and are skipped.
        """
        with self._locked():
            range_end = range_end or self._now()
            events = self._retry(lambda: self.store.list_events(range_start, range_end), 'list_events')
            logger.info(f"Checking {len(events)} events between {format_utc_iso(range_start)} and {format_utc_iso(range_end)}")

            stats = {'scanned': len(events), 'checked': 0, 'deleted': 0, 'skipped': 0}
            for event in events:
                key = extract_key(event.title)
                if not key:
                    continue
                if is_composite_key(key):
                    stats['skipped'] += 1
                    continue

                stats['checked'] += 1
                if self.fetcher.record_exists(key):
                    continue

                self._retry(lambda e=event: self.store.delete_event(e), 'delete_removed')
                stats['deleted'] += 1
                logger.info(f"Deleted event for removed Toggl entry {ID_TOKEN}{key}")

        logger.info(f"Deletion sweep completed: {stats['deleted']} events removed")
        return stats
