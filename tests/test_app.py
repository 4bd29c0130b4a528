"""
Web surface tests using the Flask test client
"""
from dataclasses import replace
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app import Components, create_app
from conftest import NOW, FakeFetcher, make_record
from sync.engine import SyncEngine
from sync.history import SyncHistory
from sync.matcher import EventMatcher
from sync.sweeper import EventSweeper
from sync.writer import EventWriter

API_KEY = 'test-key'


@pytest.fixture
def app_config(config):
    return replace(config, admin_api_key=API_KEY)


@pytest.fixture
def fetcher():
    records = [make_record(i, NOW - timedelta(days=i), description=f"Task {i}") for i in range(1, 4)]
    return FakeFetcher(records, existing_ids={"1", "2", "3"})


@pytest.fixture
def scheduler():
    scheduler = MagicMock()
    scheduler.is_running.return_value = True
    scheduler.has_pending_continuation.return_value = False
    return scheduler


@pytest.fixture
def components(app_config, store, fetcher, checkpoints, run_lock, notifier, scheduler):
    history = SyncHistory(now=lambda: NOW)
    engine = SyncEngine(
        app_config,
        fetcher=fetcher,
        matcher=EventMatcher(store, app_config, notifier=notifier, now=lambda: NOW, sleep=lambda s: None),
        writer=EventWriter(store),
        checkpoints=checkpoints,
        lock=run_lock,
        notifier=notifier,
        history=history,
        now=lambda: NOW,
    )
    auth = MagicMock()
    auth.is_authenticated.return_value = True
    return Components(
        config=app_config,
        engine=engine,
        sweeper=EventSweeper(store, fetcher, app_config, lock=run_lock, now=lambda: NOW, sleep=lambda s: None),
        checkpoints=checkpoints,
        history=history,
        notifier=notifier,
        scheduler=scheduler,
        auth=auth,
    )


@pytest.fixture
def client(components):
    app = create_app(components)
    app.config['TESTING'] = True
    return app.test_client()


def post(client, path, **kwargs):
    return client.post(path, headers={'X-API-Key': API_KEY}, **kwargs)


class TestReadOnlyEndpoints:

    @pytest.mark.unit
    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'
        assert response.headers['X-Content-Type-Options'] == 'nosniff'

    @pytest.mark.unit
    def test_status_before_first_run(self, client):
        data = client.get('/status').get_json()
        assert data['watermark'] is None
        assert data['watermark_display'] == 'Never'
        assert data['batch_in_progress'] is False
        assert data['last_run'] is None
        assert data['scheduler_running'] is True

    @pytest.mark.unit
    def test_status_after_run(self, client, checkpoints):
        post(client, '/sync/watch')
        data = client.get('/status').get_json()
        assert data['watermark'] == checkpoints.read().watermark
        assert data['last_run']['mode'] == 'watch'
        assert data['last_run']['success'] is True

    @pytest.mark.unit
    def test_history(self, client):
        post(client, '/sync/watch')
        data = client.get('/history?hours=48').get_json()
        assert data['period_hours'] == 48
        assert data['total_runs'] == 1
        assert data['recent_failures'] == []


class TestApiKey:

    @pytest.mark.unit
    def test_missing_key_rejected(self, client, store):
        response = client.post('/sync/watch')
        assert response.status_code == 401
        assert response.get_json()['code'] == 'UNAUTHORIZED'
        assert store.events == []

    @pytest.mark.unit
    def test_wrong_key_rejected(self, client):
        response = client.post('/checkpoint/clear', headers={'X-API-Key': 'nope'})
        assert response.status_code == 401

    @pytest.mark.unit
    def test_no_key_configured_allows_requests(self, components):
        components.config = replace(components.config, admin_api_key='')
        client = create_app(components).test_client()
        assert client.post('/sync/watch').status_code == 200


class TestSyncEndpoints:

    @pytest.mark.unit
    @pytest.mark.parametrize("mode", ['watch', 'timeout', 'complete', 'initial'])
    def test_each_mode_runs(self, client, store, mode):
        response = post(client, f'/sync/{mode}')
        data = response.get_json()
        assert response.status_code == 200
        assert data['mode'] == mode
        assert data['created'] == 3
        assert len(store.events) == 3

    @pytest.mark.unit
    def test_unknown_mode(self, client):
        assert post(client, '/sync/everything').status_code == 404

    @pytest.mark.unit
    def test_continuation_handed_to_scheduler(self, client, components, scheduler):
        components.engine.run = MagicMock(return_value={'success': True, 'continuation_requested': True})
        post(client, '/sync/complete')
        scheduler.request_continuation.assert_called_once_with()

    @pytest.mark.unit
    def test_failed_run_returns_500(self, client, fetcher):
        fetcher.records = None
        response = post(client, '/sync/watch')
        assert response.status_code == 500
        assert response.get_json()['status'] == 'no_data'

    @pytest.mark.unit
    def test_clear_checkpoint(self, client, checkpoints):
        checkpoints.write(1741000000)
        checkpoints.write_resume_index(4)

        response = post(client, '/checkpoint/clear')

        assert response.status_code == 200
        assert checkpoints.read().is_absent
        assert checkpoints.read().resume_index == 0


class TestMaintenanceEndpoints:

    @pytest.mark.unit
    def test_notify_test(self, client, notifier):
        assert post(client, '/notify/test').status_code == 200
        assert notifier.tests_sent == 1

    @pytest.mark.duplicate
    def test_remove_duplicates(self, client, store):
        store.add("Writing ID:1", NOW - timedelta(hours=5), NOW - timedelta(hours=4))
        store.add("Writing ID:1", NOW - timedelta(hours=5), NOW - timedelta(hours=4))

        data = post(client, '/duplicates/remove', json={'months': 1}).get_json()

        assert data['deleted'] == 1
        assert len(store.events) == 1

    @pytest.mark.duplicate
    def test_create_test_duplicates(self, client, store):
        data = post(client, '/duplicates/create-test').get_json()
        assert data['created'] == 2
        assert len(store.events) == 2

    @pytest.mark.unit
    def test_sweep_range(self, client, store):
        store.add("Gone ID:99", NOW - timedelta(hours=5), NOW - timedelta(hours=4))
        data = post(client, '/sweep/short').get_json()
        assert data['deleted'] == 1
        assert data['range'] == 'short'

    @pytest.mark.unit
    def test_sweep_unknown_range(self, client):
        assert post(client, '/sweep/forever').status_code == 404

    @pytest.mark.unit
    def test_sweep_failure_is_reported(self, client, store, fetcher, notifier):
        fetcher.failing_ids.add("5")
        store.add("Broken ID:5", NOW - timedelta(hours=5), NOW - timedelta(hours=4))

        response = post(client, '/sweep/short')

        assert response.status_code == 500
        assert len(notifier.notifications) == 1
        assert len(store.events) == 1

    @pytest.mark.unit
    def test_scheduler_controls(self, client, scheduler):
        scheduler.is_running.return_value = False
        assert post(client, '/scheduler/start').status_code == 200
        scheduler.start.assert_called_once_with()
        assert post(client, '/scheduler/stop').status_code == 200
        scheduler.stop.assert_called_once_with()
