"""PostgreSQL storage backend."""

from feedsync.storage.database import Database

__all__ = ["Database"]
