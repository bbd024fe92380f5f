"""Services that sit between the CLI and the sync engine."""

from feedsync.services.feed_service import (
    FeedQuery,
    FeedService,
    SourceNotFoundError,
    SourceValidationError,
)

__all__ = ["FeedQuery", "FeedService", "SourceNotFoundError", "SourceValidationError"]
