"""Query types for the item store."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ItemQuery:
    """Filters applied by ItemStore.query().

    `source_tags` maps source id to its tags so tag filters can be applied
    to items, which do not carry tags themselves.
    """

    limit: int = 20
    source_ids: list[str] | None = None
    kinds: list[str] | None = None
    tags: list[str] | None = None
    text: str | None = None
    since: datetime | None = None
    source_tags: dict[str, list[str]] = field(default_factory=dict)
