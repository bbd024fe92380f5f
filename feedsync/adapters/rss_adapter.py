"""
RSS / Atom adapter.

Subscribes to any RSS or Atom feed by URL. The cursor holds the HTTP
validators (ETag / Last-Modified) of the last fetch, so an unchanged feed
costs one 304 round trip and yields nothing. Servers that ignore the
validators simply return the full feed again; item upserts absorb the
repeats.
"""

import logging
from typing import Any

from feedsync.adapters.base import TTL_FIELD, SourceAdapter, clean_text, make_item_id
from feedsync.adapters.feeds import entry_snippet, entry_timestamp, fetch_feed
from feedsync.adapters.http_client import HTTPClient, RetryConfig
from feedsync.adapters.schemas import (
    ConfigField,
    NormalizedItem,
    SyncCursor,
    SyncResult,
    ValidationResult,
)
from feedsync.sources.schemas import Source

logger = logging.getLogger(__name__)


class RssAdapter(SourceAdapter):
    """Adapter for plain RSS/Atom feeds."""

    kind = "rss"
    display_name = "RSS / Atom Feed"
    description = "Subscribe to any RSS or Atom feed by URL."
    default_ttl_minutes = 5
    max_concurrency = 10

    def __init__(self, retry_config: RetryConfig | None = None, timeout: float | None = None):
        self._retry_config = retry_config
        self._timeout = timeout

    def describe_config(self) -> list[ConfigField]:
        return [
            ConfigField("url", "string", True, "RSS or Atom feed URL"),
            TTL_FIELD,
        ]

    async def validate(self, config: dict[str, Any]) -> ValidationResult:
        url = config.get("url")
        if not isinstance(url, str) or not url:
            return ValidationResult(ok=False, error="url is required and must be a string")

        try:
            async with HTTPClient(self._retry_config, self._timeout) as client:
                feed = await fetch_feed(client, url)
        except Exception as e:
            return ValidationResult(ok=False, error=f"Failed to fetch feed: {e}")

        return ValidationResult(ok=True, display_name=feed.title)

    async def sync(self, source: Source, cursor: SyncCursor | None) -> SyncResult:
        url = source.config["url"]
        state = cursor.data if cursor else {}

        async with HTTPClient(self._retry_config, self._timeout) as client:
            feed = await fetch_feed(
                client,
                url,
                etag=state.get("etag"),
                last_modified=state.get("last_modified"),
            )

        next_cursor = SyncCursor(
            data={"etag": feed.etag, "last_modified": feed.last_modified}
        )
        if feed.not_modified:
            return SyncResult(items=[], next_cursor=next_cursor)

        items = []
        for entry in feed.entries:
            item = self._transform(source, entry)
            if item is not None:
                items.append(item)

        logger.debug(f"Fetched {len(items)} entries from {url}")
        return SyncResult(items=items, next_cursor=next_cursor)

    def _transform(self, source: Source, entry: Any) -> NormalizedItem | None:
        native_id = entry.get("id") or entry.get("link") or entry.get("title")
        if not native_id:
            return None

        return NormalizedItem(
            id=make_item_id(source.id, self.kind, native_id),
            source_id=source.id,
            source_kind=self.kind,
            title=clean_text(entry.get("title", "")),
            url=entry.get("link", ""),
            published_at=entry_timestamp(entry),
            snippet=entry_snippet(entry),
            author=entry.get("author") or None,
        )
