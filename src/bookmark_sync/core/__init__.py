"""Core sync engine components for Bookmark Sync."""

from bookmark_sync.core.engine import SyncEngine, SyncResult
from bookmark_sync.core.merge import MergeEngine
from bookmark_sync.core.apply import ApplyEngine
from bookmark_sync.core.scheduler import SyncScheduler
from bookmark_sync.core.state import StateManager
from bookmark_sync.core.tombstones import TombstoneStore

__all__ = [
    "SyncEngine",
    "SyncResult",
    "MergeEngine",
    "ApplyEngine",
    "SyncScheduler",
    "StateManager",
    "TombstoneStore",
]
