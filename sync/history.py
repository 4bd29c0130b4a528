# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Unauthorized use, distribution, or modification is prohibited.

"""
Sync History - In-memory record of recent sync legs for /status and /history
"""
import statistics
import threading
from collections import Counter, deque
from datetime import timedelta
from typing import Dict, List, Optional

from utils.timezone import utc_now

COUNTED_FIELDS = ('processed', 'created', 'updated', 'adopted', 'unchanged', 'skipped', 'failed')


class SyncHistory:
    """Bounded log of run results, newest last"""

    def __init__(self, max_entries: int = 100, now=utc_now):
        self._entries = deque(maxlen=max_entries)
        self._now = now
        self._lock = threading.Lock()

    def add_entry(self, sync_result: Dict):
        entry = {
            'timestamp': self._now(),
            'mode': sync_result.get('mode'),
            'status': sync_result.get('status'),
            'success': bool(sync_result.get('success')),
            'duration': sync_result.get('duration') or 0,
            'next_index': sync_result.get('next_index'),
            'total': sync_result.get('total'),
            'continuation_requested': bool(sync_result.get('continuation_requested')),
            'counts': {name: sync_result.get(name) or 0 for name in COUNTED_FIELDS},
            'error': sync_result.get('error'),
        }
        with self._lock:
            self._entries.append(entry)

    @property
    def history(self) -> List[Dict]:
        with self._lock:
            return list(self._entries)

    def last_entry(self) -> Optional[Dict]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def _since(self, hours: int) -> List[Dict]:
        cutoff = self._now() - timedelta(hours=hours)
        return [entry for entry in self.history if entry['timestamp'] > cutoff]

    def get_statistics(self, hours: int = 24) -> Dict:
        """Aggregate the legs run in the last `hours` hours"""
        entries = self._since(hours)
        by_status = Counter(entry['status'] for entry in entries)
        totals = Counter()
        for entry in entries:
            totals.update(entry['counts'])

        successful = [entry for entry in entries if entry['success']]
        durations = [entry['duration'] for entry in successful if entry['duration'] > 0]
        last_success = successful[-1] if successful else None

        return {
            'period_hours': hours,
            'total_runs': len(entries),
            'successful_runs': len(successful),
            'failed_runs': len(entries) - len(successful),
            'timed_out_runs': by_status.get('timed_out', 0),
            'runs_by_status': dict(by_status),
            'continuations_requested': sum(1 for entry in entries if entry['continuation_requested']),
            'success_rate': round(len(successful) / len(entries) * 100, 1) if entries else 0,
            'average_duration': statistics.mean(durations) if durations else 0,
            'longest_duration': max(durations) if durations else 0,
            'records': {name: totals.get(name, 0) for name in COUNTED_FIELDS},
            'last_run': entries[-1]['timestamp'].isoformat() if entries else None,
            'last_successful_run': last_success['timestamp'].isoformat() if last_success else None,
        }

    def get_recent_failures(self, limit: int = 10) -> List[Dict]:
        """Failed legs, newest first"""
        failures = []
        for entry in reversed(self.history):
            if entry['success']:
                continue
            failures.append({
                'timestamp': entry['timestamp'].isoformat(),
                'mode': entry['mode'],
                'status': entry['status'],
                'error': entry['error'] or 'Unknown error',
            })
            if len(failures) >= limit:
                break
        return failures

    def clear_history(self):
        with self._lock:
            self._entries.clear()
