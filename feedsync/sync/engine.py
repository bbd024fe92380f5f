"""
Synchronization engine - decides when sources refresh and runs the fetches.

Responsibilities:
- Staleness policy (freshness window, failure backoff gate)
- Two-tier concurrency (global cap, per-kind adapter cap)
- Per-source single flight
- Rate-limit backpressure per adapter kind
- Persisting items and SyncState after every attempt
- Background loop that keeps enabled sources fresh

All mutable coordination state (syncing set, limiters, rate budgets) is
scoped to one engine instance. Check-and-set on that state happens without
an intervening await, which makes it atomic on the event loop.
"""

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

import structlog

from feedsync.adapters.base import SourceAdapter
from feedsync.adapters.registry import AdapterKindNotFoundError, AdapterRegistry
from feedsync.items.store import ItemStore
from feedsync.observability.metrics import MetricsCollector, get_metrics
from feedsync.observability.tracing import get_tracer, traced
from feedsync.sources.schemas import Source
from feedsync.sources.store import SourceStore
from feedsync.sync.backoff import ExponentialBackoff
from feedsync.sync.config import SyncConfig
from feedsync.sync.limiter import CapacityLimiter
from feedsync.sync.rate_budget import RateBudgetTracker
from feedsync.sync.schemas import SyncOutcome, SyncState, SyncStatus
from feedsync.sync.state_store import SyncStateStore

logger = structlog.get_logger(__name__)

RATE_LIMITED_MESSAGE = "rate limited"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    """
    Drives source adapters under concurrency, staleness and backoff policy.

    Usage:
        engine = SyncEngine(registry, item_store, state_store, source_store)
        engine.start_background_loop()
        outcome = await engine.sync_now(source)
        await engine.ensure_fresh(sources)
        await engine.stop_background_loop()
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        items: ItemStore,
        sync_states: SyncStateStore,
        sources: SourceStore | None = None,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the engine.

        Args:
            registry: Adapters by kind
            items: Item store written after each successful sync
            sync_states: Per-source sync bookkeeping
            sources: Configuration store scanned by the background loop
            config: Concurrency/backoff policy (defaults from environment)
            clock: Returns the current aware datetime (injectable for tests)
            metrics: Metrics collector (defaults to the global one)
        """
        self._registry = registry
        self._items = items
        self._states = sync_states
        self._sources = sources
        self._config = config or SyncConfig()
        self._clock = clock or _utc_now
        self._metrics = metrics or get_metrics()
        self._tracer = get_tracer(__name__)

        self._syncing: set[str] = set()
        self._global_limiter = CapacityLimiter(
            self._config.global_concurrency, name="global"
        )
        self._kind_limiters: dict[str, CapacityLimiter] = {}
        self._in_flight: dict[str, int] = defaultdict(int)
        self._rate_budgets = RateBudgetTracker(
            threshold=self._config.rate_limit_threshold,
            default_reset_seconds=self._config.default_rate_reset_seconds,
        )
        self._backoff = ExponentialBackoff(
            base_delay=self._config.backoff_base_seconds,
            max_delay=self._config.backoff_max_seconds,
        )

        self._background_task: asyncio.Task | None = None
        self._current_batch: asyncio.Task | None = None

    # ── Introspection ───────────────────────────────────────────

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def sync_states(self) -> SyncStateStore:
        return self._states

    @property
    def rate_budgets(self) -> RateBudgetTracker:
        return self._rate_budgets

    @property
    def syncing(self) -> frozenset[str]:
        """Ids of sources with a fetch in flight."""
        return frozenset(self._syncing)

    @property
    def in_flight(self) -> int:
        """Total adapter calls currently running."""
        return sum(self._in_flight.values())

    def in_flight_for(self, kind: str) -> int:
        return self._in_flight.get(kind, 0)

    @property
    def is_running(self) -> bool:
        """Check if the background loop is active."""
        return self._background_task is not None and not self._background_task.done()

    # ── Staleness ───────────────────────────────────────────────

    def freshness_window(self, source: Source) -> timedelta:
        """Source-level ttl override, else the adapter default."""
        minutes = source.ttl_override_minutes
        if minutes is None:
            minutes = self._registry.get(source.kind).default_ttl_minutes
        return timedelta(minutes=minutes)

    def is_stale_state(
        self,
        source: Source,
        state: SyncState | None,
        now: datetime | None = None,
    ) -> bool:
        """
        Decide whether a source is due for refresh given its SyncState.

        A source inside its failure backoff gate is never stale, even when
        its freshness window has elapsed.
        """
        now = now or self._clock()
        if state is None:
            return True
        if state.is_cooling_down(now):
            return False
        if state.last_sync_at is None:
            return True
        return now - state.last_sync_at > self.freshness_window(source)

    async def is_stale(self, source: Source) -> bool:
        state = await self._states.get(source.id)
        return self.is_stale_state(source, state)

    async def _select_stale(self, sources: Iterable[Source]) -> list[Source]:
        stale: list[Source] = []
        seen: set[str] = set()
        for source in sources:
            if not source.enabled or source.id in seen:
                continue
            seen.add(source.id)
            try:
                if await self.is_stale(source):
                    stale.append(source)
            except AdapterKindNotFoundError as e:
                logger.error("No adapter for source", source_id=source.id, error=str(e))
            except Exception as e:
                logger.error(
                    "Staleness check failed",
                    source_id=source.id,
                    error=str(e),
                )
        return stale

    # ── Engine API ──────────────────────────────────────────────

    async def ensure_fresh(self, sources: Iterable[Source]) -> dict[str, SyncOutcome]:
        """
        Refresh every enabled, stale member of sources concurrently.

        Best effort: never raises for individual failures; each outcome is
        recorded in SyncState and returned keyed by source id.
        """
        stale = await self._select_stale(sources)
        if not stale:
            return {}

        results = await asyncio.gather(
            *(self._sync_one(source) for source in stale),
            return_exceptions=True,
        )

        outcomes: dict[str, SyncOutcome] = {}
        for source, result in zip(stale, results):
            if isinstance(result, SyncOutcome):
                outcomes[source.id] = result
            elif isinstance(result, Exception):
                logger.error(
                    "Sync raised outside adapter call",
                    source_id=source.id,
                    kind=source.kind,
                    error=str(result),
                )
                outcomes[source.id] = SyncOutcome(error=str(result) or type(result).__name__)
            else:
                raise result
        return outcomes

    async def sync_now(self, source: Source) -> SyncOutcome:
        """
        Force an immediate refresh of one source.

        Bypasses staleness and rate-budget checks but still honours single
        flight and concurrency slots.

        Raises:
            AdapterKindNotFoundError: If no adapter handles source.kind
        """
        return await self._sync_one(source, force=True)

    async def run_once(self) -> dict[str, SyncOutcome]:
        """Scan all enabled sources and refresh the stale ones."""
        if self._sources is None:
            raise RuntimeError("SyncEngine needs a source store to scan sources")
        sources = await self._sources.list(enabled=True)
        return await self.ensure_fresh(sources)

    # ── Background loop lifecycle ───────────────────────────────

    def start_background_loop(self) -> None:
        """Start periodic refreshes. Calling it twice is a no-op."""
        if self.is_running:
            return
        if self._sources is None:
            raise RuntimeError("SyncEngine needs a source store for the background loop")

        self._background_task = asyncio.create_task(
            self._background_loop(),
            name="feedsync-background-sync",
        )
        logger.info(
            "Background sync started",
            interval_seconds=self._config.background_interval_seconds,
        )

    async def stop_background_loop(self) -> None:
        """Stop the loop, letting an in-progress pass finish its fetches."""
        task, self._background_task = self._background_task, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        batch, self._current_batch = self._current_batch, None
        if batch is not None and not batch.done():
            logger.info("Waiting for in-progress sync pass to finish")
            await asyncio.gather(batch, return_exceptions=True)

        logger.info("Background sync stopped")

    async def _background_loop(self) -> None:
        while True:
            try:
                self._current_batch = asyncio.create_task(self.run_once())
                # Shielded so stopping the loop never cancels a fetch midway.
                outcomes = await asyncio.shield(self._current_batch)
                if outcomes:
                    failed = sum(1 for o in outcomes.values() if not o.ok)
                    logger.info(
                        "Background sync pass complete",
                        sources=len(outcomes),
                        failed=failed,
                        items=sum(o.item_count for o in outcomes.values()),
                    )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Background sync pass failed", error=str(e))

            await asyncio.sleep(self._config.background_interval_seconds)

    # ── Core sync pipeline ──────────────────────────────────────

    def _kind_limiter(self, adapter: SourceAdapter) -> CapacityLimiter:
        limiter = self._kind_limiters.get(adapter.kind)
        if limiter is None:
            limiter = CapacityLimiter(adapter.max_concurrency, name=adapter.kind)
            self._kind_limiters[adapter.kind] = limiter
        return limiter

    async def _sync_one(self, source: Source, force: bool = False) -> SyncOutcome:
        if source.id in self._syncing:
            logger.debug("Sync already in flight", source_id=source.id)
            return SyncOutcome()

        adapter = self._registry.get(source.kind)

        self._syncing.add(source.id)
        try:
            if not force and self._rate_budgets.is_limited(source.kind, self._clock()):
                return await self._record_rate_limited(source)

            async with self._kind_limiter(adapter):
                async with self._global_limiter:
                    # A sync that held the slot before us may have spent the budget.
                    limited = not force and self._rate_budgets.is_limited(
                        source.kind, self._clock()
                    )
                    if not limited:
                        return await self._attempt(source, adapter)
            return await self._record_rate_limited(source)
        finally:
            self._syncing.discard(source.id)

    async def _attempt(self, source: Source, adapter: SourceAdapter) -> SyncOutcome:
        kind = source.kind
        previous = await self._states.get(source.id)
        cursor = previous.cursor if previous else None

        self._in_flight[kind] += 1
        self._metrics.set_in_flight(kind, self._in_flight[kind])
        start_time = time.monotonic()
        try:
            with traced(
                self._tracer,
                "sync_source",
                {"source.id": source.id, "source.kind": kind},
            ):
                result = await adapter.sync(source, cursor)
                # Cursor only advances once the items are durable.
                await self._items.upsert(result.items)
        except Exception as e:
            return await self._record_failure(
                source, previous, e, time.monotonic() - start_time
            )
        finally:
            self._in_flight[kind] -= 1
            self._metrics.set_in_flight(kind, self._in_flight[kind])

        latency = time.monotonic() - start_time
        now = self._clock()

        if result.rate_limit_remaining is not None:
            budget = self._rate_budgets.record(
                kind,
                result.rate_limit_remaining,
                result.rate_limit_reset_at,
                now,
            )
            self._metrics.set_rate_budget(kind, budget.remaining)

        save_error = await self._save_state(
            SyncState(
                source_id=source.id,
                last_status=SyncStatus.OK,
                last_sync_at=now,
                cursor=result.next_cursor,
                consecutive_failures=0,
            )
        )
        if save_error is not None:
            return SyncOutcome(error=f"Failed to save sync state: {save_error}")

        item_count = len(result.items)
        self._metrics.record_sync(kind, SyncStatus.OK.value, item_count, latency)
        logger.info(
            "Source synced",
            source_id=source.id,
            kind=kind,
            items=item_count,
            elapsed_seconds=round(latency, 3),
        )
        return SyncOutcome(item_count=item_count)

    async def _record_failure(
        self,
        source: Source,
        previous: SyncState | None,
        error: Exception,
        latency: float,
    ) -> SyncOutcome:
        now = self._clock()
        failures = (previous.consecutive_failures if previous else 0) + 1
        retry_at = self._backoff.next_retry_at(now, failures)
        message = str(error) or type(error).__name__

        await self._save_state(
            SyncState(
                source_id=source.id,
                last_status=SyncStatus.ERROR,
                last_sync_at=now,
                cursor=previous.cursor if previous else None,
                consecutive_failures=failures,
                next_retry_after=retry_at,
                last_error=message,
            )
        )

        self._metrics.record_sync(source.kind, SyncStatus.ERROR.value, latency=latency)
        self._metrics.record_error(source.kind, type(error).__name__)
        logger.warning(
            "Source sync failed",
            source_id=source.id,
            kind=source.kind,
            error=message,
            consecutive_failures=failures,
            retry_after=retry_at.isoformat(),
        )
        return SyncOutcome(error=message)

    async def _record_rate_limited(self, source: Source) -> SyncOutcome:
        previous = await self._states.get(source.id)
        await self._save_state(
            SyncState(
                source_id=source.id,
                last_status=SyncStatus.RATE_LIMITED,
                last_sync_at=previous.last_sync_at if previous else None,
                cursor=previous.cursor if previous else None,
                consecutive_failures=previous.consecutive_failures if previous else 0,
                next_retry_after=previous.next_retry_after if previous else None,
                last_error=RATE_LIMITED_MESSAGE,
            )
        )
        self._metrics.record_sync(source.kind, SyncStatus.RATE_LIMITED.value)
        budget = self._rate_budgets.get(source.kind)
        logger.info(
            "Sync skipped, rate budget exhausted",
            source_id=source.id,
            kind=source.kind,
            remaining=budget.remaining if budget else None,
            reset_at=budget.reset_at.isoformat() if budget else None,
        )
        return SyncOutcome(error=RATE_LIMITED_MESSAGE)

    async def _save_state(self, state: SyncState) -> Exception | None:
        """Persist a SyncState; a store failure is logged and returned, not raised."""
        try:
            await self._states.save(state)
        except Exception as e:
            logger.error(
                "Failed to save sync state",
                source_id=state.source_id,
                status=state.last_status.value,
                error=str(e),
            )
            return e
        return None
