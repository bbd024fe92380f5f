"""Sources: configured instances of adapter kinds."""

from feedsync.sources.schemas import Source, slugify
from feedsync.sources.store import InMemorySourceStore, SourceStore

__all__ = [
    "InMemorySourceStore",
    "Source",
    "SourceStore",
    "slugify",
]
