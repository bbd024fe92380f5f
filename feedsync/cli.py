"""
Command-line interface for feedsync.

Provides commands to manage sources, read the aggregated feed and run the
background sync loop.

Usage:
    feedsync kinds                      # List adapter kinds
    feedsync sources add rss "" --config url=https://example.com/feed.xml
    feedsync feed --limit 20 --tag python
    feedsync run --mock                 # Keep sources fresh until stopped
    feedsync init-db                    # Create PostgreSQL tables
"""

import asyncio
import json
import os
import signal
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import click

from feedsync.adapters.base import parse_timestamp
from feedsync.adapters.registry import AdapterKindNotFoundError, create_default_registry
from feedsync.config.settings import get_settings
from feedsync.items.store import InMemoryItemStore
from feedsync.observability.logging import setup_logging
from feedsync.observability.metrics import get_metrics
from feedsync.services.feed_service import (
    FeedQuery,
    FeedService,
    SourceNotFoundError,
    SourceValidationError,
)
from feedsync.sources.store import InMemorySourceStore
from feedsync.sync.engine import SyncEngine
from feedsync.sync.state_store import InMemorySyncStateStore

SEED_HELP = "JSON file of sources to import before running"


@asynccontextmanager
async def open_service(use_mock: bool = False, seed: Path | None = None) -> AsyncIterator[FeedService]:
    """Wire stores, registry and engine for the configured storage backend."""
    settings = get_settings()
    registry = create_default_registry(settings, use_mock=use_mock)

    db = None
    if settings.uses_postgres:
        from feedsync.items.repository import ItemsRepository
        from feedsync.sources.repository import SourcesRepository
        from feedsync.storage.database import Database
        from feedsync.sync.repository import SyncStateRepository

        db = Database()
        await db.connect()
        sources, items, states = SourcesRepository(db), ItemsRepository(db), SyncStateRepository(db)
    else:
        sources, items, states = InMemorySourceStore(), InMemoryItemStore(), InMemorySyncStateStore()

    engine = SyncEngine(registry, items, states, sources)
    service = FeedService(sources, items, engine, registry, states)
    try:
        if seed is not None:
            await service.import_sources(seed)
        yield service
    finally:
        await engine.stop_background_loop()
        if db is not None:
            await db.close()


def parse_config_pairs(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Turn key=value options into a config dict; JSON values are decoded."""
    config: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--config")
        try:
            config[key] = json.loads(raw)
        except json.JSONDecodeError:
            config[key] = raw
    return config


def require_persistent_storage(command: str) -> None:
    """Refuse commands whose effect would vanish with the in-memory backend."""
    if not get_settings().uses_postgres:
        raise click.ClickException(
            f"'{command}' needs persistent storage. Set STORAGE_BACKEND=postgres "
            "(and DATABASE_URL), then run 'feedsync init-db'."
        )


def _run(coro) -> Any:
    """Run a coroutine, mapping domain errors to click errors."""
    try:
        return asyncio.run(coro)
    except (SourceNotFoundError, SourceValidationError, AdapterKindNotFoundError) as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """feedsync - Aggregated feed over RSS, YouTube and GitHub sources."""
    if debug:
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from feedsync.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command()
@click.option("--mock", is_flag=True, help="Include the mock adapter")
def kinds(mock: bool) -> None:
    """List available source kinds and their configuration."""
    registry = create_default_registry(use_mock=mock)
    for desc in registry.describe_all():
        click.echo(click.style(f"{desc.kind}", bold=True) + f"  {desc.display_name}")
        click.echo(
            f"  ttl={desc.default_ttl_minutes}m  concurrency={desc.max_concurrency}"
        )
        for f in desc.config_schema:
            required = "required" if f.required else "optional"
            click.echo(f"    {f.name} ({f.type}, {required}): {f.description}")


# ── Sources ──────────────────────────────────────────────────


@main.group()
def sources() -> None:
    """Manage configured sources."""


@sources.command("list")
@click.option("--kind", default=None, help="Only sources of this kind")
@click.option("--tag", "tags", multiple=True, help="Only sources with any of these tags")
def sources_list(kind: str | None, tags: tuple[str, ...]) -> None:
    """List configured sources."""
    require_persistent_storage("sources list")

    async def run():
        async with open_service() as service:
            return await service.list_sources(kind=kind, tags=list(tags) or None)

    found = _run(run())
    if not found:
        click.echo("No sources configured")
        return
    for s in found:
        state = "" if s.enabled else click.style(" (disabled)", fg="yellow")
        tag_text = f"  [{', '.join(s.tags)}]" if s.tags else ""
        click.echo(f"{s.id}  {s.kind}  {s.name}{tag_text}{state}")


@sources.command("add")
@click.argument("kind")
@click.argument("name", default="")
@click.option("--config", "config_pairs", multiple=True, help="Config entry as key=value")
@click.option("--tag", "tags", multiple=True, help="Tag to attach (repeatable)")
def sources_add(kind: str, name: str, config_pairs: tuple[str, ...], tags: tuple[str, ...]) -> None:
    """Validate and add a source, then sync it once."""
    require_persistent_storage("sources add")
    config = parse_config_pairs(config_pairs)

    async def run():
        async with open_service() as service:
            return await service.create_source(kind, name, config, list(tags))

    source, outcome = _run(run())
    click.echo(click.style(f"Added {source.id} ({source.name})", fg="green"))
    if outcome.ok:
        click.echo(f"Synced {outcome.item_count} items")
    else:
        click.echo(click.style(f"Initial sync failed: {outcome.error}", fg="red"))


@sources.command("remove")
@click.argument("source_id")
def sources_remove(source_id: str) -> None:
    """Delete a source with its items and sync state."""
    require_persistent_storage("sources remove")

    async def run():
        async with open_service() as service:
            return await service.delete_source(source_id)

    removed = _run(run())
    click.echo(f"Removed {source_id} ({removed} items)")


@sources.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def sources_import(path: Path) -> None:
    """Import sources from a JSON seed file."""
    require_persistent_storage("sources import")

    async def run():
        async with open_service() as service:
            return await service.import_sources(path)

    imported = _run(run())
    click.echo(f"Imported {len(imported)} sources")


# ── Sync and feed ────────────────────────────────────────────


@main.command("sync-now")
@click.argument("source_id")
@click.option("--seed", type=click.Path(exists=True, dir_okay=False, path_type=Path), help=SEED_HELP)
def sync_now(source_id: str, seed: Path | None) -> None:
    """Force-refresh one source."""

    async def run():
        async with open_service(seed=seed) as service:
            return await service.sync_source(source_id)

    outcome = _run(run())
    if outcome.ok:
        click.echo(click.style(f"{source_id}: {outcome.item_count} items", fg="green"))
    else:
        click.echo(click.style(f"{source_id}: {outcome.error}", fg="red"))
        raise SystemExit(1)


@main.command()
@click.option("--limit", default=None, type=int, help="Maximum items (1-100)")
@click.option("--kind", "kinds", multiple=True, help="Only these kinds")
@click.option("--tag", "tags", multiple=True, help="Only sources with these tags")
@click.option("--query", "text", default=None, help="Case-insensitive text match")
@click.option("--since", default=None, help="Only items published after this ISO timestamp")
@click.option("--mock", is_flag=True, help="Register the mock adapter")
@click.option("--seed", type=click.Path(exists=True, dir_okay=False, path_type=Path), help=SEED_HELP)
def feed(
    limit: int | None,
    kinds: tuple[str, ...],
    tags: tuple[str, ...],
    text: str | None,
    since: str | None,
    mock: bool,
    seed: Path | None,
) -> None:
    """Refresh stale sources and print the newest items."""
    since_dt = parse_timestamp(since)
    if since and since_dt is None:
        raise click.BadParameter(f"Unparseable timestamp {since!r}", param_hint="--since")

    query = FeedQuery(
        limit=limit,
        kinds=list(kinds) or None,
        tags=list(tags) or None,
        text=text,
        since=since_dt,
    )

    async def run():
        async with open_service(use_mock=mock, seed=seed) as service:
            return await service.get_feed(query)

    items = _run(run())
    if not items:
        click.echo("No items")
        return
    for item in items:
        when = item.published_at.strftime("%Y-%m-%d %H:%M") if item.published_at else "-"
        click.echo(f"{when}  [{item.source_kind}] {item.title}")
        if item.url:
            click.echo(click.style(f"    {item.url}", dim=True))


@main.command()
def status() -> None:
    """Show the sync state of every source."""
    require_persistent_storage("status")

    async def run():
        async with open_service() as service:
            return await service.get_sync_states()

    states = _run(run())
    if not states:
        click.echo("No sync state recorded")
        return

    click.echo(f"{'SOURCE':<32} {'STATUS':<13} {'LAST SYNC':<20} FAILURES")
    for st in sorted(states, key=lambda s: s.source_id):
        color = {"ok": "green", "error": "red"}.get(st.last_status.value, "yellow")
        last = st.last_sync_at.strftime("%Y-%m-%d %H:%M:%S") if st.last_sync_at else "never"
        line = f"{st.source_id:<32} {st.last_status.value:<13} {last:<20} {st.consecutive_failures}"
        click.echo(click.style(line, fg=color))
        if st.last_error:
            click.echo(f"    {st.last_error}")


@main.command()
@click.option("--mock", is_flag=True, help="Register the mock adapter")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--seed", type=click.Path(exists=True, dir_okay=False, path_type=Path), help=SEED_HELP)
def run(mock: bool, metrics: bool, seed: Path | None) -> None:
    """Run the background sync loop until SIGINT/SIGTERM."""

    async def serve():
        async with open_service(use_mock=mock, seed=seed) as service:
            if metrics:
                get_metrics().start_server()

            # Handle shutdown signals
            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, stop.set)

            service.engine.start_background_loop()
            await stop.wait()
            click.echo("Shutting down, waiting for in-flight syncs")

    _run(serve())


# ── Maintenance ──────────────────────────────────────────────


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from feedsync.items.repository import ItemsRepository
    from feedsync.sources.repository import SourcesRepository
    from feedsync.storage.database import Database
    from feedsync.sync.repository import SyncStateRepository

    async def run():
        async with Database() as db:
            await SourcesRepository(db).create_table()
            await ItemsRepository(db).create_table()
            await SyncStateRepository(db).create_table()

    asyncio.run(run())
    click.echo("Database initialized successfully")


@main.command()
@click.option("--days", default=None, type=int, help="Retention in days (default: ITEMS_RETENTION_DAYS)")
@click.option("--dry-run", is_flag=True, help="Report the cutoff without deleting")
def cleanup(days: int | None, dry_run: bool) -> None:
    """Delete items older than the retention period."""
    require_persistent_storage("cleanup")

    async def run():
        async with open_service() as service:
            return await service.cleanup(days=days, dry_run=dry_run)

    removed = _run(run())
    if dry_run:
        click.echo("Dry run: no items deleted")
    else:
        click.echo(f"Deleted {removed} items")


if __name__ == "__main__":
    main()
