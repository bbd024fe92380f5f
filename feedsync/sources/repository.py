"""Database repository for the sources table."""

import json
import logging

from feedsync.sources.schemas import Source
from feedsync.sources.store import SourceStore
from feedsync.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id          TEXT PRIMARY KEY,
    kind        TEXT NOT NULL,
    name        TEXT NOT NULL DEFAULT '',
    enabled     BOOLEAN NOT NULL DEFAULT TRUE,
    config      JSONB NOT NULL DEFAULT '{}',
    tags        TEXT[] NOT NULL DEFAULT '{}',
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sources_kind ON sources(kind);
CREATE INDEX IF NOT EXISTS idx_sources_enabled
    ON sources(enabled) WHERE enabled = TRUE;
"""

_UPSERT_SQL = """
INSERT INTO sources (id, kind, name, enabled, config, tags, created_at, updated_at)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
ON CONFLICT (id) DO UPDATE SET
    kind = EXCLUDED.kind,
    name = EXCLUDED.name,
    enabled = EXCLUDED.enabled,
    config = EXCLUDED.config,
    tags = EXCLUDED.tags,
    updated_at = EXCLUDED.updated_at
"""


def _record_to_source(record) -> Source:
    """Convert an asyncpg Record to a Source dataclass."""
    config = record["config"]
    if isinstance(config, str):
        config = json.loads(config)
    return Source(
        id=record["id"],
        kind=record["kind"],
        name=record["name"],
        enabled=record["enabled"],
        config=dict(config) if config else {},
        tags=list(record["tags"] or []),
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


class SourcesRepository(SourceStore):
    """PostgreSQL-backed configuration store."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the sources table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Sources table ensured")

    async def list(
        self,
        enabled: bool | None = None,
        kind: str | None = None,
        tags: list[str] | None = None,
    ) -> list[Source]:
        conditions: list[str] = []
        params: list = []
        idx = 1

        if enabled is not None:
            conditions.append(f"enabled = ${idx}")
            params.append(enabled)
            idx += 1

        if kind:
            conditions.append(f"kind = ${idx}")
            params.append(kind)
            idx += 1

        if tags:
            conditions.append(f"tags && ${idx}::text[]")
            params.append(list(tags))
            idx += 1

        where_clause = " WHERE " + " AND ".join(conditions) if conditions else ""
        rows = await self._db.fetch(
            f"SELECT * FROM sources{where_clause} ORDER BY created_at, id",
            *params,
        )
        return [_record_to_source(r) for r in rows]

    async def get(self, source_id: str) -> Source | None:
        row = await self._db.fetchrow(
            "SELECT * FROM sources WHERE id = $1", source_id
        )
        return _record_to_source(row) if row else None

    async def save(self, source: Source) -> None:
        await self._db.execute(
            _UPSERT_SQL,
            source.id,
            source.kind,
            source.name,
            source.enabled,
            json.dumps(source.config),
            list(source.tags),
            source.created_at,
            source.updated_at,
        )

    async def delete(self, source_id: str) -> bool:
        result = await self._db.execute(
            "DELETE FROM sources WHERE id = $1", source_id
        )
        return result.endswith("1")
