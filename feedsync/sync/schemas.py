"""Data models for sync state and outcomes."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from feedsync.adapters.schemas import SyncCursor


class SyncStatus(str, Enum):
    """Outcome of the most recent sync attempt for a source."""

    OK = "ok"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"


@dataclass
class SyncState:
    """Durable sync bookkeeping, one record per source.

    `last_sync_at` is the time of the last adapter call; it stays None for
    a source that has only ever been skipped for rate limiting.
    """

    source_id: str
    last_status: SyncStatus
    last_sync_at: datetime | None = None
    cursor: SyncCursor | None = None
    consecutive_failures: int = 0
    next_retry_after: datetime | None = None
    last_error: str | None = None

    def is_cooling_down(self, now: datetime) -> bool:
        """True while a failed source is inside its backoff gate.

        A rate-limited skip keeps the gate of the failure before it.
        """
        return (
            self.consecutive_failures > 0
            and self.next_retry_after is not None
            and now < self.next_retry_after
        )


@dataclass
class SyncOutcome:
    """Result of one sync trigger as reported to callers."""

    item_count: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RateBudget:
    """In-memory remaining-call budget for one adapter kind."""

    remaining: int
    reset_at: datetime
    threshold: int

    def is_exhausted(self, now: datetime) -> bool:
        return now < self.reset_at and self.remaining <= self.threshold
