# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Run Lock - Mutual exclusion between sync runs

Combines a threading lock (scheduler thread vs. web requests) with an advisory
flock on a lock file (web process vs. command line runs).
"""
import fcntl
import logging
import os
import threading
import time
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class LockTimeoutError(Exception):
    """The lock could not be acquired within the wait timeout"""


class RunLock:
    """Advisory lock with a bounded wait"""

    def __init__(self, lock_file: str, poll_interval: float = 0.1, clock=time.monotonic, sleep=time.sleep):
        self.lock_file = lock_file
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._thread_lock = threading.Lock()
        self._fd = None

    def acquire(self, timeout_seconds: float) -> 'RunLock':
        """
        Wait up to `timeout_seconds` for the lock

        Raises:
            LockTimeoutError: when the wait expires
        """
        deadline = self._clock() + timeout_seconds

        if not self._thread_lock.acquire(timeout=max(0, timeout_seconds)):
            logger.error("Could not acquire lock: another run is active in this process")
            raise LockTimeoutError(f"Lock not acquired within {timeout_seconds}s")

        try:
            directory = os.path.dirname(self.lock_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            fd = os.open(self.lock_file, os.O_RDWR | os.O_CREAT, 0o644)
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if self._clock() >= deadline:
                        os.close(fd)
                        logger.error("Could not acquire lock: another process holds it")
                        raise LockTimeoutError(f"Lock not acquired within {timeout_seconds}s")
                    self._sleep(self.poll_interval)
        except BaseException:
            self._thread_lock.release()
            raise

        self._fd = fd
        logger.info("Lock acquired")
        return self

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            os.close(self._fd)
        finally:
            self._fd = None
            self._thread_lock.release()
            logger.info("Lock released")

    @property
    def locked(self) -> bool:
        return self._fd is not None

    @contextmanager
    def hold(self, timeout_seconds: float):
        """Acquire for the duration of a with-block; always released"""
        self.acquire(timeout_seconds)
        try:
            yield self
        finally:
            self.release()
