"""
Microsoft Graph calendar operation tests against a mocked session
"""
from dataclasses import replace
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
import pytz

from cal_ops import CalendarReader, CalendarStore, CalendarWriter
from config import SyncConfig
from models import CalendarApiError, CalendarEvent, CalendarNotFoundError

START = datetime(2025, 3, 1, 0, 0, tzinfo=pytz.UTC)
END = datetime(2025, 3, 10, 0, 0, tzinfo=pytz.UTC)


def _response(status_code=200, json_data=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = str(json_data)
    response.json.return_value = json_data
    return response


def _graph_event(event_id, subject, start='2025-03-01T09:00:00.0000000', end='2025-03-01T09:30:00.0000000'):
    return {
        'id': event_id,
        'subject': subject,
        'start': {'dateTime': start, 'timeZone': 'UTC'},
        'end': {'dateTime': end, 'timeZone': 'UTC'},
        'lastModifiedDateTime': '2025-03-02T10:00:00Z'
    }


@pytest.fixture
def graph_config():
    return replace(SyncConfig(), calendar_mailbox='sync@example.org', calendar_name='Toggl')


@pytest.fixture
def auth():
    auth = MagicMock()
    auth.get_headers.return_value = {'Authorization': 'Bearer t', 'Content-Type': 'application/json'}
    return auth


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def reader(auth, graph_config, session):
    return CalendarReader(auth, graph_config, session=session)


class TestCalendarReader:

    @pytest.mark.unit
    def test_follows_next_links(self, reader, session):
        session.request.side_effect = [
            _response(200, {'value': [_graph_event('a', 'One ID:1')], '@odata.nextLink': 'https://next'}),
            _response(200, {'value': [_graph_event('b', 'Two ID:2')]}),
        ]

        events = reader.get_events('cal-1', START, END)

        assert [e.event_id for e in events] == ['a', 'b']
        first_call, second_call = session.request.call_args_list
        assert first_call[0][1].endswith('/users/sync@example.org/calendars/cal-1/calendarView')
        assert first_call[1]['params']['startDateTime'] == '2025-03-01T00:00:00Z'
        assert first_call[1]['headers']['Prefer'] == 'outlook.timezone="UTC"'
        assert second_call[0][1] == 'https://next'
        assert second_call[1]['params'] is None

    @pytest.mark.unit
    def test_parses_graph_times(self, reader, session):
        session.request.return_value = _response(200, {'value': [_graph_event('a', 'One ID:1')]})

        event = reader.get_events('cal-1', START, END)[0]

        assert event.start == datetime(2025, 3, 1, 9, 0, tzinfo=pytz.UTC)
        assert event.end == datetime(2025, 3, 1, 9, 30, tzinfo=pytz.UTC)
        assert event.last_updated == datetime(2025, 3, 2, 10, 0, tzinfo=pytz.UTC)

    @pytest.mark.unit
    def test_search_filters_by_substring(self, reader, session):
        session.request.return_value = _response(200, {'value': [
            _graph_event('a', 'One ID:98'),
            _graph_event('b', 'Two ID:987'),
            _graph_event('c', 'Staff meeting'),
        ]})

        events = reader.search_events('cal-1', START, END, 'ID:98')

        assert [e.event_id for e in events] == ['a', 'b']

    @pytest.mark.unit
    def test_error_page_raises(self, reader, session):
        session.request.return_value = _response(503, {'error': 'busy'})
        with pytest.raises(CalendarApiError) as exc_info:
            reader.get_events('cal-1', START, END)
        assert exc_info.value.status_code == 503

    @pytest.mark.unit
    def test_token_refreshed_once_on_401(self, reader, session, auth):
        session.request.side_effect = [_response(401, {}), _response(200, {'value': []})]
        assert reader.get_events('cal-1', START, END) == []
        auth.clear_tokens.assert_called_once_with()

    @pytest.mark.unit
    def test_calendar_id_lookup_is_cached(self, reader, session):
        session.request.return_value = _response(200, {'value': [
            {'id': 'cal-9', 'name': 'Other'}, {'id': 'cal-1', 'name': 'Toggl'}
        ]})

        assert reader.find_calendar_id('Toggl') == 'cal-1'
        assert reader.find_calendar_id('Toggl') == 'cal-1'
        assert session.request.call_count == 1


class TestCalendarStore:

    @pytest.fixture
    def writer(self):
        writer = MagicMock(spec=CalendarWriter)
        writer.create_event.return_value = 'evt-1'
        return writer

    @pytest.mark.unit
    def test_missing_calendar_raises(self, graph_config, writer):
        reader = MagicMock(spec=CalendarReader)
        reader.find_calendar_id.return_value = None
        store = CalendarStore(reader, writer, graph_config)

        with pytest.raises(CalendarNotFoundError):
            store.create_event('Writing ID:1', START, END)
        writer.create_event.assert_not_called()

    @pytest.mark.unit
    def test_configured_calendar_id_skips_lookup(self, graph_config, writer):
        reader = MagicMock(spec=CalendarReader)
        store = CalendarStore(reader, writer, replace(graph_config, calendar_id='cal-7'))

        event = store.create_event('Writing ID:1', START, END)

        assert event.event_id == 'evt-1'
        writer.create_event.assert_called_once_with('cal-7', 'Writing ID:1', START, END)
        reader.find_calendar_id.assert_not_called()

    @pytest.mark.unit
    def test_update_keeps_unchanged_fields(self, graph_config, writer):
        store = CalendarStore(MagicMock(spec=CalendarReader), writer, replace(graph_config, calendar_id='cal-7'))
        event = store.create_event('Writing ID:1', START, END)

        store.update_event(event, title='Editing ID:1')

        writer.update_event.assert_called_once_with('cal-7', 'evt-1', 'Editing ID:1', START, END)
        assert event.title == 'Editing ID:1'

    @pytest.fixture
    def listing_reader(self):
        reader = MagicMock(spec=CalendarReader)
        reader.get_events.return_value = [
            CalendarEvent(event_id='e1', title='Writing ID:1', start=START + timedelta(hours=9),
                          end=START + timedelta(hours=10)),
            CalendarEvent(event_id='e2', title='Reading ID:2', start=START + timedelta(days=1),
                          end=START + timedelta(days=1, hours=1)),
        ]
        return reader

    @pytest.mark.unit
    def test_searches_share_one_listing(self, graph_config, writer, listing_reader):
        store = CalendarStore(listing_reader, writer, replace(graph_config, calendar_id='cal-7'), clock=lambda: 0.0)

        assert [e.event_id for e in store.search_events(START, END, 'ID:1')] == ['e1']
        assert [e.event_id for e in store.search_events(START, END + timedelta(seconds=30), 'ID:2')] == ['e2']

        listing_reader.get_events.assert_called_once_with('cal-7', START, END + timedelta(seconds=600))
        listing_reader.search_events.assert_not_called()

    @pytest.mark.unit
    def test_listing_expires_and_can_be_dropped(self, graph_config, writer, listing_reader):
        now = [0.0]
        store = CalendarStore(listing_reader, writer, replace(graph_config, calendar_id='cal-7'),
                              clock=lambda: now[0])

        store.search_events(START, END, 'ID:1')
        now[0] = 600.0
        store.search_events(START, END, 'ID:1')
        store.invalidate_cache()
        store.search_events(START, END, 'ID:1')

        assert listing_reader.get_events.call_count == 3

    @pytest.mark.unit
    def test_listing_follows_writes(self, graph_config, writer, listing_reader):
        store = CalendarStore(listing_reader, writer, replace(graph_config, calendar_id='cal-7'), clock=lambda: 0.0)
        store.search_events(START, END, 'ID:')

        created = store.create_event('Notes ID:9', START + timedelta(hours=2), START + timedelta(hours=3))
        assert store.search_events(START, END, 'ID:9') == [created]

        store.update_event(CalendarEvent(event_id='e1', title='Writing ID:1', start=START, end=END),
                           title='Editing ID:1')
        assert [e.title for e in store.search_events(START, END, 'ID:1')] == ['Editing ID:1']

        store.delete_event(CalendarEvent(event_id='e2', title='Reading ID:2', start=START, end=END))
        assert store.search_events(START, END, 'ID:2') == []

        assert listing_reader.get_events.call_count == 1

    @pytest.mark.unit
    def test_zero_lifetime_searches_the_calendar_each_time(self, graph_config, writer):
        reader = MagicMock(spec=CalendarReader)
        reader.search_events.return_value = []
        store = CalendarStore(reader, writer, replace(graph_config, calendar_id='cal-7', search_cache_seconds=0))

        store.search_events(START, END, 'ID:1')
        store.search_events(START, END, 'ID:1')

        assert reader.search_events.call_count == 2
        reader.search_events.assert_called_with('cal-7', START, END, 'ID:1')
        reader.get_events.assert_not_called()


class TestCalendarWriter:

    @pytest.mark.unit
    def test_create_posts_utc_times(self, auth, graph_config, session):
        session.request.return_value = _response(201, {'id': 'evt-1'})
        writer = CalendarWriter(auth, graph_config, session=session)

        assert writer.create_event('cal-1', 'Writing ID:1', START, END) == 'evt-1'
        payload = session.request.call_args[1]['json']
        assert payload['start'] == {'dateTime': '2025-03-01T00:00:00', 'timeZone': 'UTC'}
        assert payload['subject'] == 'Writing ID:1'

    @pytest.mark.unit
    def test_delete_of_missing_event_succeeds(self, auth, graph_config, session):
        session.request.return_value = _response(404, {})
        CalendarWriter(auth, graph_config, session=session).delete_event('cal-1', 'evt-123456789')

    @pytest.mark.unit
    def test_update_failure_raises(self, auth, graph_config, session):
        session.request.return_value = _response(500, {})
        with pytest.raises(CalendarApiError):
            CalendarWriter(auth, graph_config, session=session).update_event('cal-1', 'evt-1', 't', START, END)
