"""
Shared RSS/Atom fetching helpers built on feedparser.

fetch_feed() performs a conditional GET: when the caller passes the
validators from the previous fetch and the server answers 304, no parsing
happens and `not_modified` is set.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import feedparser

from feedsync.adapters.base import parse_timestamp, strip_html
from feedsync.adapters.http_client import HTTPClient

logger = logging.getLogger(__name__)


class FeedParseError(Exception):
    """Raised when a response body is not a usable RSS/Atom document."""


@dataclass
class FetchedFeed:
    """A fetched feed plus the validators to send next time."""

    parsed: Any | None
    etag: str | None = None
    last_modified: str | None = None

    @property
    def not_modified(self) -> bool:
        return self.parsed is None

    @property
    def title(self) -> str | None:
        if self.parsed is None:
            return None
        return self.parsed.feed.get("title") or None

    @property
    def entries(self) -> list:
        if self.parsed is None:
            return []
        return list(self.parsed.get("entries", []))


async def fetch_feed(
    client: HTTPClient,
    url: str,
    etag: str | None = None,
    last_modified: str | None = None,
) -> FetchedFeed:
    """
    GET and parse a feed, honouring ETag / Last-Modified validators.

    Raises:
        HTTPClientError: On HTTP failure
        FeedParseError: If the body is not a feed
    """
    headers = {"Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8"}
    if etag:
        headers["If-None-Match"] = etag
    if last_modified:
        headers["If-Modified-Since"] = last_modified

    response = await client.get(url, headers=headers)
    new_etag = response.headers.get("etag") or etag
    new_last_modified = response.headers.get("last-modified") or last_modified

    if response.status_code == 304:
        logger.debug(f"Feed not modified: {url}")
        return FetchedFeed(parsed=None, etag=new_etag, last_modified=new_last_modified)

    parsed = feedparser.parse(response.content)
    if parsed.get("bozo") and not parsed.get("entries") and not parsed.feed.get("title"):
        reason = parsed.get("bozo_exception")
        raise FeedParseError(f"Not a valid RSS/Atom feed at {url}: {reason}")

    return FetchedFeed(parsed=parsed, etag=new_etag, last_modified=new_last_modified)


def entry_timestamp(entry: Any) -> datetime | None:
    """Publication (or update) time of a feed entry as aware UTC."""
    for key in ("published_parsed", "updated_parsed"):
        struct = entry.get(key)
        if struct:
            return datetime.fromtimestamp(calendar.timegm(struct), tz=timezone.utc)
    for key in ("published", "updated"):
        parsed = parse_timestamp(entry.get(key))
        if parsed is not None:
            return parsed
    return None


def entry_snippet(entry: Any) -> str:
    """Plain-text excerpt from summary or content."""
    summary = entry.get("summary")
    if not summary and entry.get("content"):
        summary = entry["content"][0].get("value", "")
    return strip_html(summary or "")
