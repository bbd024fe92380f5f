"""Database repository for the sync_states table."""

import json
import logging

from feedsync.adapters.schemas import SyncCursor
from feedsync.storage.database import Database
from feedsync.sync.schemas import SyncState, SyncStatus
from feedsync.sync.state_store import SyncStateStore

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sync_states (
    source_id             TEXT PRIMARY KEY,
    last_status           TEXT NOT NULL,
    last_sync_at          TIMESTAMPTZ,
    cursor                JSONB,
    consecutive_failures  INTEGER NOT NULL DEFAULT 0,
    next_retry_after      TIMESTAMPTZ,
    last_error            TEXT
);
"""

_UPSERT_SQL = """
INSERT INTO sync_states (
    source_id, last_status, last_sync_at, cursor,
    consecutive_failures, next_retry_after, last_error
)
VALUES ($1, $2, $3, $4, $5, $6, $7)
ON CONFLICT (source_id) DO UPDATE SET
    last_status = EXCLUDED.last_status,
    last_sync_at = EXCLUDED.last_sync_at,
    cursor = EXCLUDED.cursor,
    consecutive_failures = EXCLUDED.consecutive_failures,
    next_retry_after = EXCLUDED.next_retry_after,
    last_error = EXCLUDED.last_error
"""


def _record_to_state(record) -> SyncState:
    """Convert an asyncpg Record to a SyncState dataclass."""
    cursor = record["cursor"]
    if isinstance(cursor, str):
        cursor = json.loads(cursor)
    return SyncState(
        source_id=record["source_id"],
        last_status=SyncStatus(record["last_status"]),
        last_sync_at=record["last_sync_at"],
        cursor=SyncCursor(data=cursor.get("data", {})) if cursor else None,
        consecutive_failures=record["consecutive_failures"],
        next_retry_after=record["next_retry_after"],
        last_error=record["last_error"],
    )


class SyncStateRepository(SyncStateStore):
    """PostgreSQL-backed sync state store."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the sync_states table (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Sync states table ensured")

    async def get(self, source_id: str) -> SyncState | None:
        row = await self._db.fetchrow(
            "SELECT * FROM sync_states WHERE source_id = $1", source_id
        )
        return _record_to_state(row) if row else None

    async def save(self, state: SyncState) -> None:
        await self._db.execute(
            _UPSERT_SQL,
            state.source_id,
            state.last_status.value,
            state.last_sync_at,
            state.cursor.model_dump_json() if state.cursor is not None else None,
            state.consecutive_failures,
            state.next_retry_after,
            state.last_error,
        )

    async def all(self) -> list[SyncState]:
        rows = await self._db.fetch("SELECT * FROM sync_states ORDER BY source_id")
        return [_record_to_state(r) for r in rows]

    async def delete(self, source_id: str) -> bool:
        result = await self._db.execute(
            "DELETE FROM sync_states WHERE source_id = $1", source_id
        )
        return result.endswith("1")
