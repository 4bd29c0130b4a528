# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Key-value storage tiers used for checkpoint persistence

DurableStore is a single JSON file with no expiry. CacheStore keeps one JSON file
per key with an expiry timestamp and is only a performance cache.
"""
import json
import logging
import os
import re
import tempfile
import threading
import time
from typing import Optional

logger = logging.getLogger(__name__)


class DurableStore:
    """File-backed key-value store without expiry; values are strings"""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def _load(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Durable store {self.path} unreadable, starting empty: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Durable store {self.path} is not a JSON object, starting empty")
            return {}
        return data

    def _save(self, data: dict):
        directory = os.path.dirname(self.path) or '.'
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.kv-', suffix='.json')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._load().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str):
        with self._lock:
            data = self._load()
            data[key] = value
            self._save(data)

    def delete(self, key: str):
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._save(data)


class CacheStore:
    """Simple file-based cache with per-entry TTL"""

    def __init__(self, cache_dir: str, clock=time.time):
        self.cache_dir = cache_dir
        self._clock = clock
        self._cache_available = True
        try:
            os.makedirs(cache_dir, exist_ok=True)
        except (OSError, PermissionError) as e:
            logger.warning(f"Cache directory not available: {e}. Cache will be disabled.")
            self._cache_available = False

    def _file_for(self, key: str) -> str:
        safe_key = re.sub(r'[^A-Za-z0-9_.-]', '_', key)
        return os.path.join(self.cache_dir, f"{safe_key}.json")

    def get(self, key: str) -> Optional[str]:
        """Get cached value, None when missing or expired"""
        if not self._cache_available:
            return None

        cache_file = self._file_for(key)
        try:
            if not os.path.exists(cache_file):
                return None
            with open(cache_file, 'r') as f:
                data = json.load(f)
            if self._clock() < float(data['expires_at']):
                value = data.get('value')
                return value if isinstance(value, str) else None
            self.delete(key)
            return None
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error reading cache {key}: {e}")
            return None

    def set(self, key: str, value: str, ttl_seconds: int):
        """Set cached value with TTL"""
        if not self._cache_available:
            return

        cache_file = self._file_for(key)
        try:
            data = {
                'value': value,
                'expires_at': self._clock() + ttl_seconds
            }
            with open(cache_file, 'w') as f:
                json.dump(data, f)
        except OSError as e:
            logger.error(f"Error writing cache {key}: {e}")

    def delete(self, key: str):
        """Clear cached value"""
        if not self._cache_available:
            return

        cache_file = self._file_for(key)
        try:
            if os.path.exists(cache_file):
                os.remove(cache_file)
        except OSError as e:
            logger.error(f"Error clearing cache {key}: {e}")
