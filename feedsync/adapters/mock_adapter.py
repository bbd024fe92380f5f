"""
Mock adapter for testing and development.

Generates synthetic items without any network access. Useful for:
- Running the sync loop without credentials
- Exercising backoff and rate limiting (via the `fail` and
  `rate_limit_remaining` config keys)
- Development and debugging
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Any

from feedsync.adapters.base import TTL_FIELD, SourceAdapter, make_item_id
from feedsync.adapters.schemas import (
    ConfigField,
    NormalizedItem,
    SyncCursor,
    SyncResult,
    ValidationResult,
)
from feedsync.sources.schemas import Source

TITLE_TEMPLATES = [
    "Weekly roundup #{n}: what shipped in {topic}",
    "{topic} notes, part {n}",
    "Release {n}.0 brings faster {topic}",
    "Why {topic} still matters ({n} lessons)",
    "Field report {n}: {topic} in production",
]

TOPICS = ["async I/O", "feed parsing", "caching", "observability", "packaging", "databases"]

SAMPLE_AUTHORS = ["ada", "grace", "linus", "guido", "barbara", "ken"]


class MockAdapterError(Exception):
    """Raised by the mock adapter when configured to fail."""


class MockAdapter(SourceAdapter):
    """
    Mock adapter that produces a fixed number of new items per sync.

    Items are numbered by a monotonically increasing sequence kept in the
    cursor, so a replayed cursor yields the same ids again.
    """

    kind = "mock"
    display_name = "Mock Source"
    description = "Synthetic items for development and testing."
    default_ttl_minutes = 1
    max_concurrency = 4

    def __init__(self, items_per_sync: int = 3, seed: int | None = None):
        """
        Initialize mock adapter.

        Args:
            items_per_sync: Default number of items generated per sync call
            seed: Seed for the title/author picker (reproducible output)
        """
        self._items_per_sync = items_per_sync
        self._seed = seed

    def describe_config(self) -> list[ConfigField]:
        return [
            ConfigField("items_per_sync", "number", False, "Items generated per sync"),
            ConfigField("fail", "boolean", False, "Raise on every sync call"),
            ConfigField(
                "rate_limit_remaining", "number", False, "Remaining budget reported after each sync"
            ),
            TTL_FIELD,
        ]

    async def validate(self, config: dict[str, Any]) -> ValidationResult:
        count = config.get("items_per_sync", self._items_per_sync)
        if not isinstance(count, int) or count < 0:
            return ValidationResult(ok=False, error="items_per_sync must be a non-negative integer")
        return ValidationResult(ok=True, display_name=config.get("name") or "Mock feed")

    async def sync(self, source: Source, cursor: SyncCursor | None) -> SyncResult:
        if source.config.get("fail"):
            raise MockAdapterError(f"Configured failure for {source.id}")

        sequence = int(cursor.data.get("sequence", 0)) if cursor else 0
        count = int(source.config.get("items_per_sync", self._items_per_sync))
        now = datetime.now(timezone.utc)

        items = [
            self._generate(source, sequence + offset + 1, now - timedelta(minutes=offset))
            for offset in range(count)
        ]

        remaining = source.config.get("rate_limit_remaining")
        return SyncResult(
            items=items,
            next_cursor=SyncCursor(data={"sequence": sequence + count}),
            rate_limit_remaining=int(remaining) if remaining is not None else None,
            rate_limit_reset_at=now + timedelta(hours=1) if remaining is not None else None,
        )

    def _generate(self, source: Source, n: int, published_at: datetime) -> NormalizedItem:
        rng = random.Random(f"{self._seed}:{source.id}:{n}")
        title = rng.choice(TITLE_TEMPLATES).format(n=n, topic=rng.choice(TOPICS))
        return NormalizedItem(
            id=make_item_id(source.id, self.kind, str(n)),
            source_id=source.id,
            source_kind=self.kind,
            title=title,
            url=f"https://example.com/{source.id}/{n}",
            published_at=published_at,
            snippet=f"Synthetic item {n} from {source.name or source.id}.",
            author=rng.choice(SAMPLE_AUTHORS),
            meta={"sequence": n},
        )
