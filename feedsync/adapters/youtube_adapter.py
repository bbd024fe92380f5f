"""
YouTube channel adapter.

Follows a channel's uploads through its public Atom feed, which is how
podcasts published on YouTube are usually tracked. The cursor is a
publication-time watermark: entries at or before it are skipped.
"""

import logging
from datetime import datetime
from typing import Any
from urllib.parse import parse_qs, urlparse

from feedsync.adapters.base import (
    TTL_FIELD,
    SourceAdapter,
    clean_text,
    format_timestamp,
    make_item_id,
    parse_timestamp,
)
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

FEED_URL = "https://www.youtube.com/feeds/videos.xml"


def feed_url(channel_id: str) -> str:
    return f"{FEED_URL}?channel_id={channel_id}"


def video_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def extract_video_id(entry: Any) -> str:
    """Video id from the yt:videoId element, else the link's v parameter."""
    vid = entry.get("yt_videoid")
    if vid:
        return vid
    link = entry.get("link", "")
    values = parse_qs(urlparse(link).query).get("v")
    return values[0] if values else link


class YouTubeAdapter(SourceAdapter):
    """Adapter for YouTube channel upload feeds."""

    kind = "youtube"
    display_name = "YouTube Channel"
    description = (
        "Subscribe to a YouTube channel's uploads via its Atom feed. "
        "Works well for podcasts published on YouTube."
    )
    default_ttl_minutes = 15
    max_concurrency = 5

    def __init__(self, retry_config: RetryConfig | None = None, timeout: float | None = None):
        self._retry_config = retry_config
        self._timeout = timeout

    def describe_config(self) -> list[ConfigField]:
        return [
            ConfigField("channel_id", "string", True, "YouTube channel ID (starts with UC...)"),
            ConfigField("handle", "string", False, "YouTube @handle for display"),
            TTL_FIELD,
        ]

    async def validate(self, config: dict[str, Any]) -> ValidationResult:
        channel_id = config.get("channel_id")
        if not isinstance(channel_id, str) or not channel_id:
            return ValidationResult(ok=False, error="channel_id is required and must be a string")

        try:
            async with HTTPClient(self._retry_config, self._timeout) as client:
                feed = await fetch_feed(client, feed_url(channel_id))
        except Exception as e:
            return ValidationResult(ok=False, error=f"Failed to fetch YouTube feed: {e}")

        return ValidationResult(ok=True, display_name=feed.title)

    async def sync(self, source: Source, cursor: SyncCursor | None) -> SyncResult:
        channel_id = source.config["channel_id"]
        watermark = parse_timestamp(cursor.data.get("last_published_at")) if cursor else None

        async with HTTPClient(self._retry_config, self._timeout) as client:
            feed = await fetch_feed(client, feed_url(channel_id))

        latest: datetime | None = watermark
        items: list[NormalizedItem] = []
        for entry in feed.entries:
            published = entry_timestamp(entry)
            if watermark is not None and (published is None or published <= watermark):
                continue
            if published is not None and (latest is None or published > latest):
                latest = published

            vid = extract_video_id(entry)
            items.append(
                NormalizedItem(
                    id=make_item_id(source.id, self.kind, vid),
                    source_id=source.id,
                    source_kind=self.kind,
                    title=clean_text(entry.get("title", "")),
                    url=entry.get("link") or video_url(vid),
                    published_at=published,
                    snippet=entry_snippet(entry),
                    author=entry.get("author") or feed.title,
                    meta={"video_id": vid},
                )
            )

        logger.debug(f"Fetched {len(items)} new videos for channel {channel_id}")
        return SyncResult(
            items=items,
            next_cursor=SyncCursor(data={"last_published_at": format_timestamp(latest)}),
        )
