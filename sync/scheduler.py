# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Background Scheduler - Periodic watch runs and one-shot continuations
"""
import logging
import threading
from threading import Lock
from typing import Dict, Optional

import schedule

from config import SyncConfig
from sync.engine import RunMode
from utils.timezone import format_display_time, utc_now

logger = logging.getLogger(__name__)

WATCH_TAG = 'watch'
CONTINUATION_TAG = 'continuation'


class SyncScheduler:
    """Manages background sync scheduling"""

    def __init__(self, sync_engine, config: SyncConfig, auth=None, poll_interval: float = 1.0):
        self.sync_engine = sync_engine
        self.config = config
        self.auth = auth
        self.poll_interval = poll_interval
        self.scheduler = schedule.Scheduler()
        self.scheduler_lock = Lock()
        self.scheduler_running = False
        self.scheduler_thread = None
        self._wakeup = threading.Event()

    def _now_text(self) -> str:
        return format_display_time(utc_now(), self.config.display_timezone)

    def start(self):
        """Start periodic watch runs"""
        with self.scheduler_lock:
            if self.scheduler_running:
                logger.info("Scheduler already running")
                return
            self.scheduler_running = True
            self.scheduler.every(self.config.watch_interval_min).minutes.do(self.run_watch).tag(WATCH_TAG)
            logger.info(
                f"Scheduler started - watch every {self.config.watch_interval_min} minutes "
                f"- started at {self._now_text()}"
            )
        self._ensure_thread()

    def stop(self):
        """Stop periodic runs; an already requested continuation still fires"""
        with self.scheduler_lock:
            self.scheduler_running = False
            self.scheduler.clear(WATCH_TAG)
        self._wakeup.set()
        logger.info(f"Stopping scheduler at {self._now_text()}...")

    def is_running(self) -> bool:
        """Check if scheduler is running"""
        with self.scheduler_lock:
            return bool(self.scheduler_running and self.scheduler_thread and self.scheduler_thread.is_alive())

    def has_pending_continuation(self) -> bool:
        with self.scheduler_lock:
            return any(CONTINUATION_TAG in job.tags for job in self.scheduler.jobs)

    def request_continuation(self) -> bool:
        """
        Schedule one follow-up watch run

        At most one continuation is pending at any time; returns False when
        one was already queued.
        """
        with self.scheduler_lock:
            if any(CONTINUATION_TAG in job.tags for job in self.scheduler.jobs):
                logger.info("Continuation already pending")
                return False
            delay = max(1, self.config.continuation_delay_seconds)
            self.scheduler.every(delay).seconds.do(self._run_continuation).tag(CONTINUATION_TAG)
        logger.info(f"Continuation scheduled in {delay}s")
        self._ensure_thread()
        return True

    def _run_continuation(self):
        # Drop this job before running so the leg can queue the next one
        with self.scheduler_lock:
            self.scheduler.clear(CONTINUATION_TAG)
        self.run_watch()
        return schedule.CancelJob

    def run_watch(self) -> Optional[Dict]:
        """Scheduled entry point: one watch leg, continuing when the engine asks to"""
        try:
            if self.auth is not None and not self.auth.is_authenticated():
                logger.warning(f"⚠️ Scheduled sync skipped - Graph credentials missing at {self._now_text()}")
                return None

            logger.info(f"Running scheduled sync at {self._now_text()}")
            result = self.sync_engine.run(RunMode.WATCH)

            if result.get('continuation_requested'):
                self.request_continuation()
            elif result.get('success'):
                logger.info(f"✅ Scheduled sync completed successfully at {self._now_text()}")
            else:
                logger.warning(f"⚠️ Scheduled sync completed with issues at {self._now_text()}: {result.get('message')}")
            return result
        except Exception as e:
            # Don't let sync errors crash the scheduler
            logger.error(f"❌ Scheduled sync failed at {self._now_text()}: {e}")
            return None

    def _ensure_thread(self):
        with self.scheduler_lock:
            if self.scheduler_thread is not None and self.scheduler_thread.is_alive():
                return
            self._wakeup.clear()
            self.scheduler_thread = threading.Thread(target=self._run_scheduler, daemon=True)
            self.scheduler_thread.start()

    def _run_scheduler(self):
        """Run the scheduler loop until stopped and no jobs remain"""
        while True:
            with self.scheduler_lock:
                if not self.scheduler_running and not self.scheduler.jobs:
                    self.scheduler_thread = None
                    break

            self.scheduler.run_pending()
            self._wakeup.wait(self.poll_interval)
            self._wakeup.clear()

        logger.info(f"Scheduler stopped at {self._now_text()}")
