"""
Tests for SyncEngine.

Verifies:
- Per-source single flight
- Global and per-kind concurrency caps
- Staleness policy, including the failure backoff gate
- Cursor hand-off and idempotent upserts
- Rate-limit backpressure
- Background loop lifecycle
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import T0, FakeAdapter, make_item, make_source
from feedsync.adapters.registry import AdapterKindNotFoundError, AdapterRegistry
from feedsync.adapters.schemas import SyncCursor, SyncResult
from feedsync.sync.config import SyncConfig
from feedsync.sync.engine import RATE_LIMITED_MESSAGE, SyncEngine
from feedsync.sync.schemas import SyncOutcome, SyncState, SyncStatus


async def wait_until(predicate, attempts: int = 500) -> None:
    """Yield to the event loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


def build_engine(adapters, item_store, state_store, clock, **config) -> SyncEngine:
    return SyncEngine(
        AdapterRegistry(adapters),
        item_store,
        state_store,
        config=SyncConfig(**config),
        clock=clock,
        metrics=MagicMock(),
    )


# ── Single flight ─────────────────────────────────────────────


class TestSingleFlight:
    """At most one sync per source is in flight."""

    @pytest.mark.asyncio
    async def test_second_sync_now_is_zero_item_noop(self, engine, fake_adapter):
        """A duplicate trigger while syncing returns zero items without calling the adapter."""
        fake_adapter.gate = asyncio.Event()
        source = make_source("dup")

        first = asyncio.create_task(engine.sync_now(source))
        await wait_until(lambda: fake_adapter.active == 1)

        second = await engine.sync_now(source)

        assert second == SyncOutcome(item_count=0)
        assert second.ok
        assert fake_adapter.calls_for("dup") == 1

        fake_adapter.gate.set()
        result = await first
        assert result.item_count == 1
        assert fake_adapter.calls_for("dup") == 1

    @pytest.mark.asyncio
    async def test_source_marked_syncing_only_while_in_flight(self, engine, fake_adapter):
        fake_adapter.gate = asyncio.Event()
        source = make_source("busy")

        task = asyncio.create_task(engine.sync_now(source))
        await wait_until(lambda: fake_adapter.active == 1)
        assert engine.syncing == frozenset({"busy"})
        assert engine.in_flight_for("fake") == 1

        fake_adapter.gate.set()
        await task
        assert engine.syncing == frozenset()
        assert engine.in_flight == 0

    @pytest.mark.asyncio
    async def test_syncing_cleared_after_failure(self, engine, fake_adapter):
        """The in-progress marker is removed even when the adapter raises."""
        fake_adapter.script.append(RuntimeError("boom"))

        outcome = await engine.sync_now(make_source("flaky"))

        assert outcome.error == "boom"
        assert engine.syncing == frozenset()
        assert engine.in_flight == 0

    @pytest.mark.asyncio
    async def test_duplicate_in_same_batch_synced_once(self, engine, fake_adapter):
        source = make_source("twice")

        outcomes = await engine.ensure_fresh([source, source])

        assert list(outcomes) == ["twice"]
        assert fake_adapter.calls_for("twice") == 1


# ── Concurrency caps ─────────────────────────────────────────


class TestConcurrencyCaps:
    """Global and per-kind slot limits."""

    @pytest.mark.asyncio
    async def test_global_cap_bounds_all_fetches(self, item_store, state_store, clock):
        gate = asyncio.Event()
        adapter = FakeAdapter(max_concurrency=10, gate=gate)
        engine = build_engine([adapter], item_store, state_store, clock, global_concurrency=2)
        sources = [make_source(f"s{i}") for i in range(6)]

        batch = asyncio.create_task(engine.ensure_fresh(sources))
        await wait_until(lambda: adapter.active == 2)
        for _ in range(20):
            await asyncio.sleep(0)
        assert adapter.active == 2

        gate.set()
        outcomes = await batch

        assert len(outcomes) == 6
        assert all(o.ok for o in outcomes.values())
        assert adapter.max_active == 2
        assert len(adapter.calls) == 6

    @pytest.mark.asyncio
    async def test_per_kind_cap(self, item_store, state_store, clock):
        gate = asyncio.Event()
        slow = FakeAdapter(kind="slow", max_concurrency=1, gate=gate)
        wide = FakeAdapter(kind="wide", max_concurrency=3, gate=gate)
        engine = build_engine([slow, wide], item_store, state_store, clock, global_concurrency=8)
        sources = [make_source(f"slow{i}", kind="slow") for i in range(4)]
        sources += [make_source(f"wide{i}", kind="wide") for i in range(4)]

        batch = asyncio.create_task(engine.ensure_fresh(sources))
        await wait_until(lambda: slow.active == 1 and wide.active == 3)

        gate.set()
        await batch

        assert slow.max_active == 1
        assert wide.max_active == 3
        assert len(slow.calls) == 4
        assert len(wide.calls) == 4

    @pytest.mark.asyncio
    async def test_caps_hold_for_mixed_forced_and_scheduled(self, item_store, state_store, clock):
        gate = asyncio.Event()
        adapter = FakeAdapter(max_concurrency=2, gate=gate)
        engine = build_engine([adapter], item_store, state_store, clock, global_concurrency=8)

        scheduled = asyncio.create_task(
            engine.ensure_fresh([make_source(f"bg{i}") for i in range(3)])
        )
        forced = [
            asyncio.create_task(engine.sync_now(make_source(f"now{i}"))) for i in range(2)
        ]
        await wait_until(lambda: adapter.active == 2)

        gate.set()
        await asyncio.gather(scheduled, *forced)

        assert adapter.max_active == 2
        assert len(adapter.calls) == 5

    @pytest.mark.asyncio
    async def test_slots_released_after_failures(self, item_store, state_store, clock):
        adapter = FakeAdapter(max_concurrency=1)
        adapter.script.extend([RuntimeError("one"), RuntimeError("two")])
        engine = build_engine([adapter], item_store, state_store, clock, global_concurrency=1)

        outcomes = await engine.ensure_fresh([make_source(f"f{i}") for i in range(3)])

        assert sum(1 for o in outcomes.values() if not o.ok) == 2
        assert sum(1 for o in outcomes.values() if o.ok) == 1


# ── Staleness ─────────────────────────────────────────────────


class TestStaleness:
    """Freshness windows and the backoff gate."""

    @pytest.mark.asyncio
    async def test_new_source_synced_exactly_once(self, engine, fake_adapter):
        """A source with no state is stale and ensure_fresh calls the adapter once."""
        source = make_source("new")
        assert await engine.is_stale(source)

        outcomes = await engine.ensure_fresh([source])

        assert outcomes["new"].item_count == 1
        assert len(fake_adapter.calls) == 1
        assert fake_adapter.calls[0] == ("new", None)

    @pytest.mark.asyncio
    async def test_fresh_source_not_resynced(self, engine, fake_adapter):
        source = make_source("fresh")
        await engine.ensure_fresh([source])

        outcomes = await engine.ensure_fresh([source])

        assert outcomes == {}
        assert len(fake_adapter.calls) == 1

    @pytest.mark.asyncio
    async def test_stale_after_adapter_window(self, engine, fake_adapter, clock):
        source = make_source("aging")
        await engine.ensure_fresh([source])

        clock.advance(minutes=9)
        assert not await engine.is_stale(source)

        clock.advance(minutes=2)
        assert await engine.is_stale(source)
        await engine.ensure_fresh([source])
        assert fake_adapter.calls_for("aging") == 2

    @pytest.mark.asyncio
    async def test_source_ttl_override(self, engine, clock):
        source = make_source("quick", config={"ttl_minutes": 1})
        await engine.ensure_fresh([source])

        assert engine.freshness_window(source) == timedelta(minutes=1)
        clock.advance(seconds=61)
        assert await engine.is_stale(source)

    @pytest.mark.asyncio
    async def test_cooling_down_source_not_stale(self, engine, state_store, clock):
        """Inside the backoff gate a source is not stale even past its window."""
        source = make_source("cooling")
        await state_store.save(
            SyncState(
                source_id="cooling",
                last_status=SyncStatus.ERROR,
                last_sync_at=T0 - timedelta(hours=1),
                consecutive_failures=3,
                next_retry_after=T0 + timedelta(minutes=5),
            )
        )

        assert not await engine.is_stale(source)
        clock.advance(minutes=5, seconds=1)
        assert await engine.is_stale(source)

    @pytest.mark.asyncio
    async def test_disabled_sources_skipped(self, engine, fake_adapter):
        outcomes = await engine.ensure_fresh([make_source("off", enabled=False)])

        assert outcomes == {}
        assert fake_adapter.calls == []

    @pytest.mark.asyncio
    async def test_unknown_kind_does_not_block_batch(self, engine, fake_adapter):
        outcomes = await engine.ensure_fresh(
            [make_source("ghost", kind="nope"), make_source("real")]
        )

        assert outcomes["ghost"].error == "Unknown source kind: nope"
        assert outcomes["real"].ok
        assert fake_adapter.calls_for("real") == 1


# ── Cursor and items ─────────────────────────────────────────


class TestCursorAndItems:
    """Cursor hand-off between calls and idempotent persistence."""

    @pytest.mark.asyncio
    async def test_second_call_receives_first_cursor(
        self, engine, fake_adapter, item_store, state_store
    ):
        """A, B, C with K1 then D with K2 leaves {A, B, C, D} and cursor K2."""
        source = make_source("cur")
        k1 = SyncCursor(data={"k": 1})
        k2 = SyncCursor(data={"k": 2})
        seen_cursors = []

        def second_call(src, cursor):
            seen_cursors.append(cursor)
            return SyncResult(items=[make_item("cur", "D")], next_cursor=k2)

        fake_adapter.script.extend(
            [
                SyncResult(items=[make_item("cur", n) for n in "ABC"], next_cursor=k1),
                second_call,
            ]
        )

        first = await engine.sync_now(source)
        second = await engine.sync_now(source)

        assert first.item_count == 3
        assert second.item_count == 1
        assert seen_cursors == [k1]
        assert await item_store.count() == 4
        state = await state_store.get("cur")
        assert state.cursor == k2
        assert state.last_status == SyncStatus.OK

    @pytest.mark.asyncio
    async def test_repeated_identical_fetch_keeps_item_count(
        self, engine, fake_adapter, item_store
    ):
        source = make_source("same")
        items = [make_item("same", n) for n in "ABC"]
        fake_adapter.script.extend([SyncResult(items=items), SyncResult(items=items)])

        await engine.sync_now(source)
        await engine.sync_now(source)

        assert await item_store.count() == 3

    @pytest.mark.asyncio
    async def test_upsert_failure_is_sync_failure(
        self, engine, fake_adapter, item_store, state_store
    ):
        """The cursor must not advance past items that were never stored."""
        fake_adapter.script.append(
            SyncResult(items=[make_item("db", "A")], next_cursor=SyncCursor(data={"k": 9}))
        )
        item_store.upsert = AsyncMock(side_effect=RuntimeError("db down"))

        outcome = await engine.sync_now(make_source("db"))

        assert outcome.error == "db down"
        state = await state_store.get("db")
        assert state.last_status == SyncStatus.ERROR
        assert state.cursor is None
        assert state.consecutive_failures == 1


# ── Failure backoff ──────────────────────────────────────────


class TestFailureBackoff:
    """Consecutive failure counting and retry gates."""

    @pytest.mark.asyncio
    async def test_fail_fail_succeed_counter_sequence(
        self, engine, fake_adapter, state_store, clock
    ):
        source = make_source("retry")
        fake_adapter.script.extend([RuntimeError("e1"), RuntimeError("e2")])

        await engine.sync_now(source)
        s1 = await state_store.get("retry")
        await engine.sync_now(source)
        s2 = await state_store.get("retry")
        await engine.sync_now(source)
        s3 = await state_store.get("retry")

        assert [s1.consecutive_failures, s2.consecutive_failures, s3.consecutive_failures] == [1, 2, 0]
        assert s1.next_retry_after == T0 + timedelta(seconds=2)
        assert s2.next_retry_after == T0 + timedelta(seconds=4)
        assert s2.next_retry_after > s1.next_retry_after
        assert s3.next_retry_after is None
        assert s3.last_error is None
        assert s3.last_status == SyncStatus.OK

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_cursor(self, engine, fake_adapter, state_store):
        source = make_source("keep")
        good = SyncCursor(data={"etag": "abc"})
        fake_adapter.script.extend([SyncResult(next_cursor=good), RuntimeError("offline")])

        await engine.sync_now(source)
        outcome = await engine.sync_now(source)

        state = await state_store.get("keep")
        assert outcome.error == "offline"
        assert state.cursor == good
        assert state.last_error == "offline"
        assert state.last_status == SyncStatus.ERROR

    @pytest.mark.asyncio
    async def test_backoff_capped(self, engine, fake_adapter, state_store, clock):
        await state_store.save(
            SyncState(source_id="dead", last_status=SyncStatus.ERROR, consecutive_failures=20)
        )
        fake_adapter.script.append(RuntimeError("still down"))

        await engine.sync_now(make_source("dead"))

        state = await state_store.get("dead")
        assert state.consecutive_failures == 21
        assert state.next_retry_after == T0 + timedelta(seconds=1800)

    @pytest.mark.asyncio
    async def test_ensure_fresh_never_raises(self, engine, fake_adapter):
        fake_adapter.script.extend([RuntimeError("a"), ValueError("b")])

        outcomes = await engine.ensure_fresh([make_source("x"), make_source("y")])

        assert {o.error for o in outcomes.values()} == {"a", "b"}

    @pytest.mark.asyncio
    async def test_sync_now_unknown_kind_raises(self, engine):
        with pytest.raises(AdapterKindNotFoundError):
            await engine.sync_now(make_source("mystery", kind="nope"))
        assert engine.syncing == frozenset()

    @pytest.mark.asyncio
    async def test_state_save_failure_returned_as_error(self, engine, state_store, item_store):
        state_store.save = AsyncMock(side_effect=RuntimeError("disk full"))

        outcome = await engine.sync_now(make_source("unsaved"))

        assert outcome.error == "Failed to save sync state: disk full"
        assert await item_store.count() == 1
        assert engine.syncing == frozenset()

    @pytest.mark.asyncio
    async def test_state_save_failure_after_adapter_error(self, engine, fake_adapter, state_store):
        state_store.save = AsyncMock(side_effect=RuntimeError("disk full"))
        fake_adapter.script.append(RuntimeError("offline"))

        outcome = await engine.sync_now(make_source("unsaved"))

        assert outcome.error == "offline"


# ── Rate-limit backpressure ──────────────────────────────────


class TestRateLimit:
    """Skipping non-forced syncs while a kind's budget is exhausted."""

    def _report(self, adapter, remaining, reset_at):
        adapter.script.append(
            SyncResult(rate_limit_remaining=remaining, rate_limit_reset_at=reset_at)
        )

    @pytest.mark.asyncio
    async def test_skip_without_adapter_call(self, engine, fake_adapter, state_store):
        self._report(fake_adapter, 10, T0 + timedelta(minutes=30))
        await engine.sync_now(make_source("first"))

        outcomes = await engine.ensure_fresh([make_source("second")])

        assert outcomes["second"].error == RATE_LIMITED_MESSAGE
        assert fake_adapter.calls_for("second") == 0
        state = await state_store.get("second")
        assert state.last_status == SyncStatus.RATE_LIMITED
        assert state.consecutive_failures == 0
        assert state.last_sync_at is None

    @pytest.mark.asyncio
    async def test_attempted_again_after_reset(self, engine, fake_adapter, clock):
        self._report(fake_adapter, 10, T0 + timedelta(minutes=30))
        await engine.sync_now(make_source("first"))
        source = make_source("later")
        await engine.ensure_fresh([source])

        clock.advance(minutes=30)
        outcomes = await engine.ensure_fresh([source])

        assert outcomes["later"].ok
        assert fake_adapter.calls_for("later") == 1

    @pytest.mark.asyncio
    async def test_forced_sync_bypasses_budget(self, engine, fake_adapter):
        self._report(fake_adapter, 0, T0 + timedelta(minutes=30))
        await engine.sync_now(make_source("first"))

        outcome = await engine.sync_now(make_source("urgent"))

        assert outcome.ok
        assert fake_adapter.calls_for("urgent") == 1

    @pytest.mark.asyncio
    async def test_budget_above_threshold_not_limited(self, engine, fake_adapter):
        self._report(fake_adapter, 51, T0 + timedelta(minutes=30))
        await engine.sync_now(make_source("first"))

        outcomes = await engine.ensure_fresh([make_source("second")])

        assert outcomes["second"].ok

    @pytest.mark.asyncio
    async def test_missing_reset_defaults_to_one_hour(self, engine, fake_adapter, clock):
        self._report(fake_adapter, 5, None)
        await engine.sync_now(make_source("first"))
        source = make_source("second")

        clock.advance(minutes=59)
        assert (await engine.ensure_fresh([source]))["second"].error == RATE_LIMITED_MESSAGE

        clock.advance(minutes=2)
        assert (await engine.ensure_fresh([source]))["second"].ok

    @pytest.mark.asyncio
    async def test_lowest_remaining_kept_within_window(self, engine, fake_adapter):
        reset = T0 + timedelta(minutes=30)
        self._report(fake_adapter, 40, reset)
        self._report(fake_adapter, 400, reset)

        await engine.sync_now(make_source("a"))
        await engine.sync_now(make_source("b"))

        assert engine.rate_budgets.get("fake").remaining == 40

    @pytest.mark.asyncio
    async def test_other_kinds_unaffected(self, item_store, state_store, clock):
        limited = FakeAdapter(kind="limited")
        free = FakeAdapter(kind="free")
        engine = build_engine([limited, free], item_store, state_store, clock)
        limited.script.append(
            SyncResult(rate_limit_remaining=0, rate_limit_reset_at=T0 + timedelta(hours=1))
        )
        await engine.sync_now(make_source("l1", kind="limited"))

        outcomes = await engine.ensure_fresh(
            [make_source("l2", kind="limited"), make_source("f1", kind="free")]
        )

        assert outcomes["l2"].error == RATE_LIMITED_MESSAGE
        assert outcomes["f1"].ok

    @pytest.mark.asyncio
    async def test_skip_preserves_failure_bookkeeping(self, engine, fake_adapter, state_store):
        await state_store.save(
            SyncState(
                source_id="sick",
                last_status=SyncStatus.ERROR,
                last_sync_at=T0 - timedelta(hours=2),
                cursor=SyncCursor(data={"k": 1}),
                consecutive_failures=2,
                next_retry_after=T0 - timedelta(minutes=1),
                last_error="timeout",
            )
        )
        self._report(fake_adapter, 1, T0 + timedelta(minutes=10))
        await engine.sync_now(make_source("first"))

        await engine.ensure_fresh([make_source("sick")])

        state = await state_store.get("sick")
        assert state.last_status == SyncStatus.RATE_LIMITED
        assert state.consecutive_failures == 2
        assert state.cursor == SyncCursor(data={"k": 1})
        assert state.last_sync_at == T0 - timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_queued_syncs_recheck_budget_after_slot(self, item_store, state_store, clock):
        adapter = FakeAdapter(kind="gh", max_concurrency=1)
        engine = build_engine([adapter], item_store, state_store, clock, global_concurrency=8)
        adapter.script.append(
            SyncResult(rate_limit_remaining=0, rate_limit_reset_at=T0 + timedelta(minutes=30))
        )
        sources = [make_source(f"gh{i}", kind="gh") for i in range(4)]

        outcomes = await engine.ensure_fresh(sources)

        assert [sid for sid, _ in adapter.calls] == ["gh0"]
        assert outcomes["gh0"].ok
        for sid in ("gh1", "gh2", "gh3"):
            assert outcomes[sid].error == RATE_LIMITED_MESSAGE
            assert (await state_store.get(sid)).last_status == SyncStatus.RATE_LIMITED
        assert engine.syncing == frozenset()


# ── Background loop ──────────────────────────────────────────


class TestBackgroundLoop:
    """start_background_loop / stop_background_loop lifecycle."""

    @pytest.mark.asyncio
    async def test_requires_source_store(self, registry, item_store, state_store):
        engine = SyncEngine(registry, item_store, state_store, metrics=MagicMock())

        with pytest.raises(RuntimeError):
            engine.start_background_loop()

    @pytest.mark.asyncio
    async def test_syncs_enabled_sources(self, engine, fake_adapter, source_store):
        await source_store.save(make_source("on"))
        await source_store.save(make_source("off", enabled=False))

        engine.start_background_loop()
        assert engine.is_running
        await wait_until(lambda: fake_adapter.calls_for("on") == 1)
        await engine.stop_background_loop()

        assert not engine.is_running
        assert fake_adapter.calls_for("off") == 0

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, engine):
        engine.start_background_loop()
        task = engine._background_task
        engine.start_background_loop()

        assert engine._background_task is task
        await engine.stop_background_loop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_fetch(
        self, engine, fake_adapter, source_store, state_store
    ):
        """Stopping never cancels a fetch midway; its state is still recorded."""
        fake_adapter.gate = asyncio.Event()
        await source_store.save(make_source("long"))

        engine.start_background_loop()
        await wait_until(lambda: fake_adapter.active == 1)

        stopping = asyncio.create_task(engine.stop_background_loop())
        for _ in range(10):
            await asyncio.sleep(0)
        assert not stopping.done()

        fake_adapter.gate.set()
        await stopping

        state = await state_store.get("long")
        assert state.last_status == SyncStatus.OK

    @pytest.mark.asyncio
    async def test_stop_without_start(self, engine):
        await engine.stop_background_loop()
        assert not engine.is_running
