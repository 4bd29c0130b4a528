"""
Shared fixtures: in-memory calendar, fake Toggl fetcher, recording notifier
and a controllable clock.
"""
import itertools
from dataclasses import replace
from datetime import datetime, timedelta

import pytest
import pytz

from config import SyncConfig
from models import CalendarApiError, CalendarEvent, ProjectInfo, TimeRecord, TogglApiError
from sync.checkpoint import CheckpointStore
from sync.lock import RunLock
from utils.kv_store import CacheStore, DurableStore

NOW = datetime(2025, 3, 10, 12, 0, 0, tzinfo=pytz.UTC)


class FakeClock:
    """Monotonic clock that only moves when told to"""

    def __init__(self, start: float = 1000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float):
        self.value += seconds


class FakeCalendarStore:
    """In-memory event store with the CalendarStore interface"""

    def __init__(self, clock: FakeClock = None, search_cost: float = 0.0):
        self.events = []
        self.clock = clock
        self.search_cost = search_cost
        self.fail_updates = 0
        self.fail_deletes = 0
        self.create_calls = []
        self.update_calls = []
        self.delete_calls = []
        self.search_calls = []
        self.invalidations = 0
        self._ids = itertools.count(1)

    def add(self, title, start, end, last_updated=None) -> CalendarEvent:
        event = CalendarEvent(
            event_id=f"evt-{next(self._ids)}", title=title, start=start, end=end,
            last_updated=last_updated
        )
        self.events.append(event)
        return event

    def create_event(self, title, start, end) -> CalendarEvent:
        self.create_calls.append((title, start, end))
        return self.add(title, start, end)

    def list_events(self, range_start, range_end):
        return [e for e in self.events if e.start < range_end and e.end > range_start]

    def search_events(self, range_start, range_end, text_query):
        self.search_calls.append(text_query)
        if self.clock is not None:
            self.clock.advance(self.search_cost)
        return [e for e in self.list_events(range_start, range_end) if text_query in e.title]

    def update_event(self, event, title=None, start=None, end=None):
        self.update_calls.append((event.event_id, title, start, end))
        if self.fail_updates:
            self.fail_updates -= 1
            raise CalendarApiError("Event update returned 503", status_code=503)
        if title is not None:
            event.title = title
        if start is not None:
            event.start = start
        if end is not None:
            event.end = end

    def delete_event(self, event):
        self.delete_calls.append(event.event_id)
        if self.fail_deletes:
            self.fail_deletes -= 1
            raise CalendarApiError("Event deletion returned 503", status_code=503)
        self.events = [e for e in self.events if e is not event]

    def invalidate_cache(self):
        self.invalidations += 1

    def titles(self):
        return sorted(e.title for e in self.events)


class FakeFetcher:
    """Toggl client stand-in"""

    def __init__(self, records=None, projects=None, existing_ids=None, failing_ids=None):
        self.records = records if records is None else list(records)
        self.projects = projects or {}
        self.existing_ids = set(existing_ids or ())
        self.failing_ids = set(failing_ids or ())
        self.fetch_calls = []
        self.project_calls = []
        self.exists_calls = []

    def fetch_records(self, start_iso, end_iso):
        self.fetch_calls.append((start_iso, end_iso))
        return None if self.records is None else list(self.records)

    def fetch_project(self, workspace_id, project_id):
        self.project_calls.append((workspace_id, project_id))
        return ProjectInfo(name=self.projects.get(project_id, ''))

    def record_exists(self, record_id):
        self.exists_calls.append(record_id)
        if record_id in self.failing_ids:
            raise TogglApiError("Unexpected response code: 500", status_code=500)
        return record_id in self.existing_ids


class RecordingNotifier:
    def __init__(self):
        self.notifications = []
        self.tests_sent = 0
        self.enabled = True

    def notify(self, error, record_id=None):
        self.notifications.append((error, record_id))
        return True

    def send_test(self):
        self.tests_sent += 1
        return True


def make_record(record_id, start, minutes=30, description="Task", project_id=None, stop=True):
    start_iso = start.strftime('%Y-%m-%dT%H:%M:%S+00:00')
    stop_iso = (start + timedelta(minutes=minutes)).strftime('%Y-%m-%dT%H:%M:%S+00:00') if stop else None
    return TimeRecord(
        id=None if record_id is None else str(record_id),
        start=start_iso,
        stop=stop_iso,
        description=description,
        workspace_id='1' if project_id else None,
        project_id=project_id,
    )


@pytest.fixture
def config(tmp_path):
    return replace(
        SyncConfig(),
        data_dir=str(tmp_path),
        retry_delay_ms=0,
        lock_timeout_seconds=0,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeCalendarStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def checkpoints(config):
    return CheckpointStore.from_config(
        config, DurableStore(config.checkpoint_file), CacheStore(config.cache_dir)
    )


@pytest.fixture
def run_lock(config):
    return RunLock(config.lock_file)
