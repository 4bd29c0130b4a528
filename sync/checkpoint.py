# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Checkpoint Store - Persists the sync watermark and the batch resume index

The watermark lives in two tiers: a TTL cache for fast reads and a durable store
that is the source of truth. The resume index only lives in the durable tier.
"""
import json
import logging

from models import SyncCursor

logger = logging.getLogger(__name__)

ABSENT_WATERMARK = -1


class CheckpointStore:
    """Two-tier checkpoint persistence"""

    def __init__(self, durable, cache, checkpoint_key: str, progress_key: str, cache_ttl_seconds: int):
        self.durable = durable
        self.cache = cache
        self.checkpoint_key = checkpoint_key
        self.progress_key = progress_key
        self.cache_ttl_seconds = cache_ttl_seconds

    @classmethod
    def from_config(cls, config, durable, cache) -> 'CheckpointStore':
        return cls(durable, cache, config.checkpoint_key, config.progress_key, config.cache_ttl_seconds)

    @staticmethod
    def _decode_watermark(payload: str):
        """Return the watermark in a payload, or None when malformed"""
        try:
            data = json.loads(payload)
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        watermark = data.get('watermark')
        # bool is an int subclass but never a valid timestamp
        if isinstance(watermark, bool) or not isinstance(watermark, (int, float)):
            return None
        return int(watermark)

    def read_watermark(self) -> int:
        """Watermark in unix seconds, or -1 when no checkpoint exists"""
        cached = self.cache.get(self.checkpoint_key)
        if cached is not None:
            watermark = self._decode_watermark(cached)
            if watermark is not None:
                logger.debug(f"Cache hit: {watermark}")
                return watermark
            logger.error(f"Malformed cached checkpoint evicted: {cached!r}")
            self.cache.delete(self.checkpoint_key)

        stored = self.durable.get(self.checkpoint_key)
        if stored is not None:
            watermark = self._decode_watermark(stored)
            if watermark is not None:
                logger.debug(f"Durable store hit: {watermark}")
                self.cache.set(self.checkpoint_key, stored, self.cache_ttl_seconds)
                return watermark
            logger.error(f"Malformed stored checkpoint evicted: {stored!r}")
            self.durable.delete(self.checkpoint_key)

        logger.debug("No checkpoint found")
        return ABSENT_WATERMARK

    def read_resume_index(self) -> int:
        raw = self.durable.get(self.progress_key)
        if raw is None:
            return 0
        try:
            index = int(raw)
        except (TypeError, ValueError):
            index = -1
        if index < 0:
            logger.error(f"Malformed resume index evicted: {raw!r}")
            self.durable.delete(self.progress_key)
            return 0
        return index

    def read(self) -> SyncCursor:
        return SyncCursor(watermark=self.read_watermark(), resume_index=self.read_resume_index())

    def write(self, watermark: int):
        """Persist the watermark to both tiers"""
        payload = json.dumps({'watermark': int(watermark)})
        self.durable.set(self.checkpoint_key, payload)
        self.cache.set(self.checkpoint_key, payload, self.cache_ttl_seconds)
        logger.debug(f"Checkpoint updated: {payload}")

    def write_resume_index(self, index: int):
        self.durable.set(self.progress_key, str(int(index)))

    def clear_resume_index(self):
        self.durable.delete(self.progress_key)

    def clear(self):
        """Forget the watermark in both tiers and any pending resume index"""
        self.cache.delete(self.checkpoint_key)
        self.durable.delete(self.checkpoint_key)
        self.durable.delete(self.progress_key)
        logger.info("Checkpoint cleared")
