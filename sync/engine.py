# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync Engine - Incremental, resumable Toggl → calendar synchronization

One run: take the lock, read the checkpoint, compute the fetch window, fetch
the records and walk them from the persisted resume index. Elapsed time is
checked between records; when the mode's budget is exceeded the position is
checkpointed and the run returns, optionally asking for a continuation.
"""
import logging
import time
import traceback
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from config import SyncConfig
from models import ID_TOKEN, ProjectInfo, TimeRecord, build_title, record_key
from sync.history import SyncHistory
from sync.matcher import MatchOutcome
from utils.logger import StructuredLogger
from utils.timezone import format_utc_iso, from_unix_seconds, to_unix_seconds, utc_now

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1)


class RunMode(Enum):
    """Invocation modes"""
    WATCH = "watch"        # scheduled, auto-continues
    TIMEOUT = "timeout"    # manual, stops and waits for a human
    COMPLETE = "complete"  # manual, auto-continues
    INITIAL = "initial"    # manual, ignores the checkpoint window

    @property
    def is_manual(self) -> bool:
        return self is not RunMode.WATCH

    @property
    def auto_continue(self) -> bool:
        return self in (RunMode.WATCH, RunMode.COMPLETE)

    @property
    def force_initial(self) -> bool:
        return self is RunMode.INITIAL


def _sort_key(record: TimeRecord):
    start = record.start_time
    return (0, _EPOCH) if start is None else (1, start.replace(tzinfo=None))


class SyncEngine:
    """Core engine for Toggl → calendar synchronization"""

    def __init__(self, config: SyncConfig, fetcher, matcher, writer, checkpoints, lock,
                 notifier=None, history: Optional[SyncHistory] = None,
                 clock: Callable[[], float] = time.monotonic,
                 now: Callable[[], datetime] = utc_now):
        self.config = config
        self.fetcher = fetcher
        self.matcher = matcher
        self.writer = writer
        self.checkpoints = checkpoints
        self.lock = lock
        self.notifier = notifier
        self.history = history or SyncHistory()
        self._clock = clock
        self._now = now
        self.structured_logger = StructuredLogger(__name__)

    def budget_for(self, mode: RunMode) -> float:
        """Execution-time budget in seconds for a mode"""
        return {
            RunMode.WATCH: self.config.watch_budget_seconds,
            RunMode.TIMEOUT: self.config.manual_timeout_budget_seconds,
            RunMode.COMPLETE: self.config.manual_complete_budget_seconds,
            RunMode.INITIAL: self.config.manual_initial_budget_seconds,
        }[mode]

    def run(self, mode: RunMode) -> Dict:
        """Run one sync leg; errors are reported, never raised"""
        started = self._clock()
        self.structured_logger.log_sync_event('sync_started', {'mode': mode.value})

        try:
            with self.lock.hold(self.config.lock_timeout_seconds):
                result = self._run_locked(mode)
        except Exception as e:
            logger.error(f"💥 Sync run ({mode.value}) failed: {type(e).__name__}: {e}")
            logger.debug(traceback.format_exc())
            self._notify(e)
            result = self._new_result(mode)
            result.update({
                'success': False,
                'status': 'error',
                'error': str(e),
                'message': f'Sync failed: {e}'
            })

        result['duration'] = round(self._clock() - started, 3)
        self.history.add_entry(result)

        event_type = {
            'completed': 'sync_completed',
            'timed_out': 'sync_timed_out',
        }.get(result['status'], 'sync_failed')
        self.structured_logger.log_sync_event(event_type, {
            key: result.get(key) for key in (
                'mode', 'total', 'start_index', 'next_index', 'created', 'updated',
                'adopted', 'unchanged', 'skipped', 'failed', 'watermark',
                'continuation_requested', 'duration', 'error'
            )
        })
        if result['success'] and result['total']:
            self.structured_logger.log_performance(
                f"sync_{mode.value}", result['duration'],
                item_count=result['next_index'] - result['start_index']
            )
        return result

    def _new_result(self, mode: RunMode) -> Dict:
        return {
            'success': True,
            'mode': mode.value,
            'status': 'completed',
            'message': '',
            'total': 0,
            'start_index': 0,
            'next_index': 0,
            'processed': 0,
            'created': 0,
            'updated': 0,
            'adopted': 0,
            'unchanged': 0,
            'skipped': 0,
            'failed': 0,
            'watermark': None,
            'continuation_requested': False,
            'window_start': None,
            'window_end': None,
            'duration': 0,
            'error': None
        }

    def compute_window(self, watermark: int, force_initial: bool = False):
        """Fetch window [start, end] for a watermark (-1 = no checkpoint)"""
        now = self._now()
        if force_initial or watermark < 0:
            logger.info(f"Initial run: fetching the last {self.config.initial_lookback_days} days")
            return now - timedelta(days=self.config.initial_lookback_days), now
        logger.info("Incremental run: fetching from the checkpoint minus the overlap window")
        return from_unix_seconds(watermark - self.config.overlap_seconds), now

    def _run_locked(self, mode: RunMode) -> Dict:
        result = self._new_result(mode)
        started = self._clock()
        deadline = started + self.budget_for(mode)
        self.matcher.start_run()

        if mode.force_initial:
            self.checkpoints.clear_resume_index()

        cursor = self.checkpoints.read()
        result['watermark'] = None if cursor.is_absent else cursor.watermark

        window_start, window_end = self.compute_window(cursor.watermark, mode.force_initial)
        start_iso, end_iso = format_utc_iso(window_start), format_utc_iso(window_end)
        result['window_start'], result['window_end'] = start_iso, end_iso

        records = self.fetcher.fetch_records(start_iso, end_iso)
        if records is None:
            logger.error("Failed to retrieve time entries: unusable response")
            self._notify(RuntimeError(f"Time entry fetch for {start_iso} - {end_iso} returned no usable data"))
            result.update({
                'success': False,
                'status': 'no_data',
                'error': 'Time entry fetch returned no usable data',
                'message': 'No usable data returned by Toggl'
            })
            return result

        records = sorted(records, key=_sort_key)
        total = len(records)
        start_index = cursor.resume_index
        if start_index > total:
            logger.warning(f"Resume index {start_index} beyond batch of {total}; finishing batch")
            start_index = total

        result['total'] = total
        result['start_index'] = start_index
        logger.info(f"Number of time entries fetched: {total}")
        logger.info(f"Processing starts from index {start_index} at {format_utc_iso(self._now())}")

        project_cache: Dict = {}
        for i in range(start_index, total):
            record = records[i]
            self._process_record(record, result, project_cache)
            result['next_index'] = i + 1

            if i + 1 < total and self._clock() > deadline:
                return self._checkpoint_timeout(mode, result, record, i + 1, total)

        result['next_index'] = total
        return self._complete(result, records, cursor.watermark)

    def _checkpoint_timeout(self, mode: RunMode, result: Dict, record: TimeRecord,
                            next_index: int, total: int) -> Dict:
        """Persist the position; the watermark stays where it is"""
        self.checkpoints.write_resume_index(next_index)
        percent = next_index * 100 // total
        logger.info(
            f"Timeout reached: Processed {next_index} of {total} ({percent}%). "
            f"Remaining: {total - next_index} records. Current record's stop date: {record.stop}"
        )

        result['status'] = 'timed_out'
        result['continuation_requested'] = mode.auto_continue
        if mode.auto_continue:
            logger.info(f"{mode.value}: budget reached, continuation requested. Next start index: {next_index}")
            result['message'] = f'Paused at {next_index}/{total}; continuing automatically'
        else:
            logger.info(f"{mode.value}: budget reached. Run again to continue from index {next_index}")
            result['message'] = f'Paused at {next_index}/{total}; run again to continue'
        return result

    def _complete(self, result: Dict, records: List[TimeRecord], prior_watermark: int) -> Dict:
        """Advance the watermark past every stop in the batch and clear the resume index"""
        max_stop = None
        for record in records:
            if record.in_progress or record.start_time is None:
                continue
            stop = record.stop_time
            if stop is None:
                continue
            stop_seconds = to_unix_seconds(stop)
            if max_stop is None or stop_seconds > max_stop:
                max_stop = stop_seconds

        if max_stop is not None:
            watermark = max(prior_watermark, max_stop + 1)
            self.checkpoints.write(watermark)
            result['watermark'] = watermark

        self.checkpoints.clear_resume_index()
        logger.info(f"Processing complete: Processed all {result['total']} records at {format_utc_iso(self._now())}")
        result['message'] = (
            f"Synced {result['total']} records: {result['created']} created, "
            f"{result['updated'] + result['adopted']} updated, {result['failed']} failed"
        )
        return result

    def _process_record(self, record: TimeRecord, result: Dict, project_cache: Dict):
        """Sync one record; errors are contained here"""
        if record.in_progress:
            logger.debug(f"Record with no stop time: {record}")
            result['skipped'] += 1
            return
        if record.start_time is None or record.stop_time is None:
            logger.debug(f"Invalid time for record: {record}")
            result['skipped'] += 1
            return

        result['processed'] += 1
        key = record.id
        try:
            key = record_key(record, self.config.default_label)
            project = self._project_for(record, project_cache)
            outcome = self.matcher.match_record(record, project.name)

            if outcome is MatchOutcome.UPDATED:
                result['updated'] += 1
            elif outcome is MatchOutcome.ADOPTED:
                result['adopted'] += 1
            elif outcome is MatchOutcome.UNCHANGED:
                result['unchanged'] += 1

            if outcome.is_synced:
                logger.debug(f"Existing event processed for {ID_TOKEN}{key}")
                return

            title = build_title(record.description, project.name, key, self.config.default_label)
            self.writer.create(title, record.start, record.stop)
            result['created'] += 1
            logger.info(f"Added event: {title}")
        except Exception as e:
            logger.error(f"Error processing record {ID_TOKEN}{key} - {type(e).__name__}: {e}")
            self._notify(e, key)
            result['failed'] += 1

    def _project_for(self, record: TimeRecord, project_cache: Dict) -> ProjectInfo:
        cache_key = (record.workspace_id, record.project_id)
        if cache_key not in project_cache:
            project_cache[cache_key] = self.fetcher.fetch_project(record.workspace_id, record.project_id)
        return project_cache[cache_key]

    def _notify(self, error: Exception, record_id: Optional[str] = None):
        if self.notifier is not None:
            self.notifier.notify(error, record_id)
