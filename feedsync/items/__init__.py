"""Items: storage and querying of normalized items."""

from feedsync.items.config import ItemsConfig
from feedsync.items.schemas import ItemQuery
from feedsync.items.store import InMemoryItemStore, ItemStore

__all__ = [
    "InMemoryItemStore",
    "ItemQuery",
    "ItemStore",
    "ItemsConfig",
]
