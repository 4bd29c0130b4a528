"""Incremental Toggl → calendar synchronization"""
from sync.checkpoint import CheckpointStore
from sync.engine import RunMode, SyncEngine
from sync.history import SyncHistory
from sync.lock import LockTimeoutError, RunLock
from sync.matcher import EventMatcher, MatchOutcome
from sync.scheduler import SyncScheduler
from sync.sweeper import EventSweeper
from sync.writer import EventWriter

__all__ = [
    'CheckpointStore', 'EventMatcher', 'EventSweeper', 'EventWriter', 'LockTimeoutError',
    'MatchOutcome', 'RunLock', 'RunMode', 'SyncEngine', 'SyncHistory', 'SyncScheduler'
]
