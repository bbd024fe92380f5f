"""
Base adapter interface and shared helpers for source adapters.

Each adapter kind implements validate() and sync(). Adapters only perform
network I/O and local transformation; all persistence, staleness and
concurrency bookkeeping belongs to the sync engine. A single instance is
called concurrently for different sources (up to max_concurrency), so
subclasses must not keep per-source state on self.
"""

import hashlib
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, ClassVar

from bs4 import BeautifulSoup

from feedsync.adapters.schemas import (
    AdapterDescriptor,
    ConfigField,
    SyncCursor,
    SyncResult,
    ValidationResult,
)
from feedsync.sources.schemas import Source

TTL_FIELD = ConfigField(
    name="ttl_minutes",
    type="number",
    required=False,
    description="Override default refresh interval (minutes)",
)


class SourceAdapter(ABC):
    """
    Abstract base class for source adapters.

    Subclasses must define the class attributes below and implement:
        - describe_config(): configuration schema for introspection
        - validate(): live probe of a configuration
        - sync(): fetch new/changed items since a cursor
    """

    kind: ClassVar[str]
    display_name: ClassVar[str]
    description: ClassVar[str] = ""
    default_ttl_minutes: ClassVar[int] = 15
    max_concurrency: ClassVar[int] = 4

    @abstractmethod
    def describe_config(self) -> list[ConfigField]:
        """Return the configuration fields this adapter understands."""
        ...

    @abstractmethod
    async def validate(self, config: dict[str, Any]) -> ValidationResult:
        """
        Probe the external source described by config.

        Returns:
            ValidationResult with an optional display name on success,
            or ok=False with a descriptive error.

        This method should NOT raise for bad configuration.
        """
        ...

    @abstractmethod
    async def sync(self, source: Source, cursor: SyncCursor | None) -> SyncResult:
        """
        Fetch content published or changed since cursor.

        Passing None (or an outdated cursor) must never lose items; it may
        only return items that were already seen.

        Raises:
            Any exception on a transient fetch failure; the engine records
            it and backs off.
        """
        ...

    def describe(self) -> AdapterDescriptor:
        """Return display metadata and config schema for this adapter."""
        return AdapterDescriptor(
            kind=self.kind,
            display_name=self.display_name,
            description=self.description,
            default_ttl_minutes=self.default_ttl_minutes,
            max_concurrency=self.max_concurrency,
            config_schema=self.describe_config(),
        )


# Common helpers used across adapters

def stable_hash(value: str) -> str:
    """
    Generate a stable, deterministic hash from a string.

    SHA256 truncated to 16 hex characters. Unlike Python's built-in hash(),
    this is deterministic across process restarts.
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def make_item_id(source_id: str, kind: str, native_id: str) -> str:
    """
    Build the global item id for a source-native identifier.

    Repeated fetches of the same external entity always produce the same id.
    """
    return f"{kind}_{source_id}_{stable_hash(native_id)}"


def clean_text(text: str) -> str:
    """Collapse whitespace and strip control characters."""
    text = " ".join(text.split())
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


def strip_html(markup: str) -> str:
    """Convert an HTML fragment to plain text."""
    if not markup:
        return ""
    if "<" not in markup:
        return clean_text(markup)
    soup = BeautifulSoup(markup, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    return clean_text(soup.get_text(separator=" "))


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an ISO-8601 or RFC-822 timestamp into an aware UTC datetime.

    Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        try:
            dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            try:
                dt = parsedate_to_datetime(text)
            except (TypeError, ValueError):
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(value: datetime | None) -> str | None:
    """Serialize a timestamp for storage inside a cursor."""
    return value.isoformat() if value is not None else None
