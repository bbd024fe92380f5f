"""Database repository for the items table."""

import json
import logging
from datetime import datetime

from feedsync.adapters.schemas import NormalizedItem
from feedsync.items.schemas import ItemQuery
from feedsync.items.store import ItemStore
from feedsync.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS items (
    id            TEXT PRIMARY KEY,
    source_id     TEXT NOT NULL,
    source_kind   TEXT NOT NULL,
    title         TEXT NOT NULL DEFAULT '',
    url           TEXT NOT NULL DEFAULT '',
    published_at  TIMESTAMPTZ,
    snippet       TEXT NOT NULL DEFAULT '',
    author        TEXT,
    meta          JSONB NOT NULL DEFAULT '{}',
    fetched_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_items_source ON items(source_id);
CREATE INDEX IF NOT EXISTS idx_items_published
    ON items(published_at DESC NULLS LAST);
"""

_UPSERT_SQL = """
INSERT INTO items (id, source_id, source_kind, title, url, published_at, snippet, author, meta)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
ON CONFLICT (id) DO UPDATE SET
    title = EXCLUDED.title,
    url = EXCLUDED.url,
    published_at = EXCLUDED.published_at,
    snippet = EXCLUDED.snippet,
    author = EXCLUDED.author,
    meta = EXCLUDED.meta,
    fetched_at = NOW()
"""


def _record_to_item(record) -> NormalizedItem:
    """Convert an asyncpg Record to a NormalizedItem."""
    meta = record["meta"]
    if isinstance(meta, str):
        meta = json.loads(meta)
    return NormalizedItem(
        id=record["id"],
        source_id=record["source_id"],
        source_kind=record["source_kind"],
        title=record["title"],
        url=record["url"],
        published_at=record["published_at"],
        snippet=record["snippet"],
        author=record["author"],
        meta=dict(meta) if meta else {},
    )


class ItemsRepository(ItemStore):
    """PostgreSQL-backed item store."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the items table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Items table ensured")

    async def upsert(self, items: list[NormalizedItem]) -> int:
        if not items:
            return 0

        await self._db.executemany(
            _UPSERT_SQL,
            [
                (
                    it.id,
                    it.source_id,
                    it.source_kind,
                    it.title,
                    it.url,
                    it.published_at,
                    it.snippet,
                    it.author,
                    json.dumps(it.meta, default=str),
                )
                for it in items
            ],
        )
        logger.debug("Upserted %d items", len(items))
        return len(items)

    async def query(self, query: ItemQuery) -> list[NormalizedItem]:
        conditions: list[str] = []
        params: list = []
        idx = 1

        source_ids = query.source_ids
        if query.tags:
            # Items carry no tags: narrow to sources whose tags overlap.
            wanted = set(query.tags)
            tagged = [
                sid for sid, tags in query.source_tags.items()
                if wanted.intersection(tags)
            ]
            source_ids = (
                [sid for sid in source_ids if sid in tagged]
                if source_ids is not None
                else tagged
            )

        if source_ids is not None:
            conditions.append(f"source_id = ANY(${idx}::text[])")
            params.append(list(source_ids))
            idx += 1

        if query.kinds:
            conditions.append(f"source_kind = ANY(${idx}::text[])")
            params.append(list(query.kinds))
            idx += 1

        if query.text:
            conditions.append(f"(title ILIKE ${idx} OR snippet ILIKE ${idx})")
            params.append(f"%{query.text}%")
            idx += 1

        if query.since is not None:
            conditions.append(f"published_at >= ${idx}")
            params.append(query.since)
            idx += 1

        where_clause = " WHERE " + " AND ".join(conditions) if conditions else ""
        params.append(query.limit)
        rows = await self._db.fetch(
            f"""
            SELECT * FROM items{where_clause}
            ORDER BY published_at DESC NULLS LAST, id
            LIMIT ${idx}
            """,
            *params,
        )
        return [_record_to_item(r) for r in rows]

    async def delete_by_source(self, source_id: str) -> int:
        result = await self._db.execute(
            "DELETE FROM items WHERE source_id = $1", source_id
        )
        return _affected(result)

    async def prune(self, older_than: datetime) -> int:
        result = await self._db.execute(
            "DELETE FROM items WHERE published_at IS NOT NULL AND published_at < $1",
            older_than,
        )
        deleted = _affected(result)
        logger.info("Pruned %d items older than %s", deleted, older_than.isoformat())
        return deleted

    async def count(self) -> int:
        return await self._db.fetchval("SELECT COUNT(*) FROM items") or 0


def _affected(status: str) -> int:
    """Parse the row count from an asyncpg status string like 'DELETE 3'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0
