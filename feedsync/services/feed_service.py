"""
Feed service - the query and source management surface.

Reads go through the sync engine first: every feed query refreshes the
stale sources it covers, then reads from the item store. Source CRUD
validates configuration through the adapter before anything is persisted.
"""

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import structlog

from feedsync.adapters.registry import AdapterRegistry
from feedsync.adapters.schemas import AdapterDescriptor, NormalizedItem
from feedsync.items.config import ItemsConfig
from feedsync.items.schemas import ItemQuery
from feedsync.items.store import ItemStore
from feedsync.sources.schemas import Source, slugify
from feedsync.sources.seed import load_seed_file
from feedsync.sources.store import SourceStore
from feedsync.sync.engine import SyncEngine
from feedsync.sync.schemas import SyncOutcome, SyncState
from feedsync.sync.state_store import SyncStateStore

logger = structlog.get_logger(__name__)


class SourceNotFoundError(LookupError):
    """Raised when a source id does not exist."""

    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id


class SourceValidationError(ValueError):
    """Raised when an adapter rejects a source configuration."""


@dataclass
class FeedQuery:
    """Parameters of one feed read. Empty filters match everything."""

    limit: int | None = None
    source_ids: list[str] | None = None
    kinds: list[str] | None = None
    tags: list[str] | None = None
    text: str | None = None
    since: datetime | None = None


class FeedService:
    """
    Aggregated feed over all configured sources.

    Usage:
        service = FeedService(sources, items, engine, registry)
        source, outcome = await service.create_source("rss", "", {"url": url})
        items = await service.get_feed(FeedQuery(limit=50, tags=["python"]))
    """

    def __init__(
        self,
        sources: SourceStore,
        items: ItemStore,
        engine: SyncEngine,
        registry: AdapterRegistry,
        sync_states: SyncStateStore | None = None,
        config: ItemsConfig | None = None,
    ):
        self._sources = sources
        self._items = items
        self._engine = engine
        self._registry = registry
        self._states = sync_states or engine.sync_states
        self._config = config or ItemsConfig()

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    # ── Reads ───────────────────────────────────────────────────

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._config.default_limit
        return max(1, min(limit, self._config.max_limit))

    async def get_feed(self, query: FeedQuery | None = None) -> list[NormalizedItem]:
        """
        Refresh stale matching sources, then return their newest items.

        Refresh failures never fail the read; they are recorded in SyncState
        and the query returns whatever the item store holds.
        """
        query = query or FeedQuery()
        selected = await self._select_sources(query)
        if not selected:
            return []

        outcomes = await self._engine.ensure_fresh(selected)
        failed = [sid for sid, o in outcomes.items() if not o.ok]
        if failed:
            logger.info("Feed served with failed refreshes", failed_sources=failed)

        return await self._items.query(
            ItemQuery(
                limit=self.clamp_limit(query.limit),
                source_ids=[s.id for s in selected],
                text=query.text,
                since=query.since,
            )
        )

    async def _select_sources(self, query: FeedQuery) -> list[Source]:
        sources = await self._sources.list(enabled=True, tags=query.tags)
        if query.source_ids:
            wanted = set(query.source_ids)
            sources = [s for s in sources if s.id in wanted]
        if query.kinds:
            kinds = set(query.kinds)
            sources = [s for s in sources if s.kind in kinds]
        return sources

    async def list_sources(
        self,
        kind: str | None = None,
        tags: list[str] | None = None,
    ) -> list[Source]:
        return await self._sources.list(kind=kind, tags=tags)

    async def get_source(self, source_id: str) -> Source:
        source = await self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(source_id)
        return source

    def get_source_kinds(self) -> list[AdapterDescriptor]:
        """Describe every registered adapter kind and its config schema."""
        return self._registry.describe_all()

    async def get_sync_states(self) -> list[SyncState]:
        return await self._states.all()

    # ── Writes ──────────────────────────────────────────────────

    async def _validate(self, kind: str, config: dict[str, Any]) -> str | None:
        adapter = self._registry.get(kind)
        result = await adapter.validate(config)
        if not result.ok:
            raise SourceValidationError(result.error or f"Invalid {kind} configuration")
        return result.display_name

    async def _unique_id(self, base: str) -> str:
        candidate = base
        suffix = 2
        while await self._sources.get(candidate) is not None:
            candidate = f"{base}-{suffix}"
            suffix += 1
        return candidate

    async def create_source(
        self,
        kind: str,
        name: str = "",
        config: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> tuple[Source, SyncOutcome]:
        """
        Validate, persist and immediately sync a new source.

        Raises:
            AdapterKindNotFoundError: Unknown kind
            SourceValidationError: The adapter rejected the configuration
        """
        config = dict(config or {})
        display_name = await self._validate(kind, config)
        name = name or display_name or kind

        source = Source(
            id=await self._unique_id(slugify(name)),
            kind=kind,
            name=name,
            config=config,
            tags=list(tags or []),
        )
        await self._sources.save(source)
        logger.info("Source created", source_id=source.id, kind=kind)

        outcome = await self._engine.sync_now(source)
        return source, outcome

    async def update_source(
        self,
        source_id: str,
        name: str | None = None,
        config: dict[str, Any] | None = None,
        tags: list[str] | None = None,
        enabled: bool | None = None,
    ) -> Source:
        """Apply the given changes; a changed config is validated first."""
        source = await self.get_source(source_id)
        changes: dict[str, Any] = {}

        if config is not None and config != source.config:
            await self._validate(source.kind, config)
            changes["config"] = dict(config)
        if name is not None:
            changes["name"] = name
        if tags is not None:
            changes["tags"] = list(tags)
        if enabled is not None:
            changes["enabled"] = enabled
        if not changes:
            return source

        updated = dataclasses.replace(
            source, updated_at=datetime.now(timezone.utc), **changes
        )
        await self._sources.save(updated)
        logger.info("Source updated", source_id=source_id, fields=sorted(changes))
        return updated

    async def delete_source(self, source_id: str) -> int:
        """Delete a source with its items and sync state. Returns items removed."""
        if not await self._sources.delete(source_id):
            raise SourceNotFoundError(source_id)
        removed = await self._items.delete_by_source(source_id)
        await self._states.delete(source_id)
        logger.info("Source deleted", source_id=source_id, items_removed=removed)
        return removed

    async def sync_source(self, source_id: str) -> SyncOutcome:
        """Force-refresh one source regardless of freshness or rate budget."""
        source = await self.get_source(source_id)
        return await self._engine.sync_now(source)

    async def import_sources(self, path: Path) -> list[Source]:
        """
        Seed sources from a JSON file.

        Entries whose id already exists or whose kind has no adapter are
        skipped. Configurations are not probed, so an import works offline.
        """
        imported: list[Source] = []
        for source in load_seed_file(path):
            if not self._registry.has(source.kind):
                logger.warning("Skipping seed entry with unknown kind", source_id=source.id, kind=source.kind)
                continue
            if await self._sources.get(source.id) is not None:
                logger.debug("Skipping existing source", source_id=source.id)
                continue
            await self._sources.save(source)
            imported.append(source)

        logger.info("Sources imported", count=len(imported), path=str(path))
        return imported

    async def cleanup(self, days: int | None = None, dry_run: bool = False) -> int:
        """
        Remove items published more than `days` ago (default: retention_days).

        With dry_run, nothing is deleted and 0 is returned.
        """
        if days is None:
            days = self._config.retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        if dry_run:
            logger.info("Cleanup dry run", cutoff=cutoff.isoformat())
            return 0
        removed = await self._items.prune(cutoff)
        logger.info("Items pruned", removed=removed, cutoff=cutoff.isoformat())
        return removed
