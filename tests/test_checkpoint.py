"""
Checkpoint persistence tests: both storage tiers and the resume index
"""
import json

import pytest

from models import SyncCursor
from sync.checkpoint import CheckpointStore
from utils.kv_store import CacheStore, DurableStore

KEY = 'toggl_exporter:lastmodify_datetime'
PROGRESS = 'toggl_exporter:last_processed_index'


class FakeTime:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestStorageTiers:

    @pytest.mark.unit
    def test_durable_store_survives_new_instance(self, tmp_path):
        path = str(tmp_path / "state" / "checkpoint.json")
        DurableStore(path).set("a", "1")
        assert DurableStore(path).get("a") == "1"

    @pytest.mark.unit
    def test_durable_store_delete(self, tmp_path):
        store = DurableStore(str(tmp_path / "checkpoint.json"))
        store.set("a", "1")
        store.delete("a")
        store.delete("missing")
        assert store.get("a") is None

    @pytest.mark.unit
    def test_durable_store_ignores_corrupt_file(self, tmp_path):
        path = tmp_path / "checkpoint.json"
        path.write_text("{not json")
        store = DurableStore(str(path))
        assert store.get("a") is None
        store.set("a", "1")
        assert json.loads(path.read_text()) == {"a": "1"}

    @pytest.mark.unit
    def test_cache_entry_expires(self, tmp_path):
        clock = FakeTime()
        cache = CacheStore(str(tmp_path / "cache"), clock=clock)
        cache.set("k", "v", ttl_seconds=60)
        clock.now = 59
        assert cache.get("k") == "v"
        clock.now = 61
        assert cache.get("k") is None


class TestCheckpointStore:

    @pytest.fixture
    def tiers(self, tmp_path):
        clock = FakeTime()
        durable = DurableStore(str(tmp_path / "checkpoint.json"))
        cache = CacheStore(str(tmp_path / "cache"), clock=clock)
        return durable, cache, clock

    @pytest.fixture
    def store(self, tiers):
        durable, cache, _ = tiers
        return CheckpointStore(durable, cache, KEY, PROGRESS, cache_ttl_seconds=43200)

    @pytest.mark.unit
    def test_absent_checkpoint(self, store):
        cursor = store.read()
        assert cursor.watermark == -1
        assert cursor.resume_index == 0
        assert cursor.is_absent

    @pytest.mark.unit
    def test_write_reaches_both_tiers(self, store, tiers):
        durable, cache, _ = tiers
        store.write(1741000000)
        assert json.loads(durable.get(KEY)) == {"watermark": 1741000000}
        assert json.loads(cache.get(KEY)) == {"watermark": 1741000000}
        assert store.read().watermark == 1741000000

    @pytest.mark.unit
    def test_cache_miss_falls_back_and_repopulates(self, store, tiers):
        durable, cache, clock = tiers
        store.write(1741000000)
        clock.now = 43201
        assert cache.get(KEY) is None

        assert store.read_watermark() == 1741000000
        assert json.loads(cache.get(KEY)) == {"watermark": 1741000000}

    @pytest.mark.unit
    def test_malformed_cache_entry_is_evicted(self, store, tiers):
        durable, cache, _ = tiers
        durable.set(KEY, json.dumps({"watermark": 42}))
        cache.set(KEY, "garbage", 100)

        assert store.read_watermark() == 42
        # repopulated from the durable tier
        assert json.loads(cache.get(KEY)) == {"watermark": 42}

    @pytest.mark.unit
    @pytest.mark.parametrize("payload", ["garbage", "[]", '{"watermark": "soon"}', '{"watermark": true}', '{}'])
    def test_malformed_durable_entry_is_absent_and_evicted(self, store, tiers, payload):
        durable, _, _ = tiers
        durable.set(KEY, payload)
        assert store.read_watermark() == -1
        assert durable.get(KEY) is None

    @pytest.mark.unit
    def test_resume_index_lives_in_durable_tier_only(self, store, tiers):
        durable, cache, _ = tiers
        store.write_resume_index(600)
        assert durable.get(PROGRESS) == "600"
        assert cache.get(PROGRESS) is None
        assert store.read().resume_index == 600

        store.clear_resume_index()
        assert store.read().resume_index == 0

    @pytest.mark.unit
    @pytest.mark.parametrize("raw", ["abc", "-3"])
    def test_malformed_resume_index(self, store, tiers, raw):
        durable, _, _ = tiers
        durable.set(PROGRESS, raw)
        assert store.read_resume_index() == 0
        assert durable.get(PROGRESS) is None

    @pytest.mark.unit
    def test_clear_removes_everything(self, store, tiers):
        durable, cache, _ = tiers
        store.write(1741000000)
        store.write_resume_index(3)
        store.clear()
        assert cache.get(KEY) is None
        assert durable.get(KEY) is None
        assert store.read() == SyncCursor()
