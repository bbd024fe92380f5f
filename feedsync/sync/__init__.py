"""Synchronization engine: staleness, concurrency, backpressure and backoff."""

from feedsync.sync.config import SyncConfig
from feedsync.sync.engine import SyncEngine
from feedsync.sync.schemas import RateBudget, SyncOutcome, SyncState, SyncStatus
from feedsync.sync.state_store import InMemorySyncStateStore, SyncStateStore

__all__ = [
    "InMemorySyncStateStore",
    "RateBudget",
    "SyncConfig",
    "SyncEngine",
    "SyncOutcome",
    "SyncState",
    "SyncStateStore",
    "SyncStatus",
]
