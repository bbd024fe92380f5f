"""Source adapters - contract, registry, and built-in kinds."""

from feedsync.adapters.base import SourceAdapter
from feedsync.adapters.registry import (
    AdapterKindNotFoundError,
    AdapterRegistry,
    create_default_registry,
)
from feedsync.adapters.schemas import (
    AdapterDescriptor,
    ConfigField,
    NormalizedItem,
    SyncCursor,
    SyncResult,
    ValidationResult,
)

__all__ = [
    "SourceAdapter",
    "AdapterRegistry",
    "AdapterKindNotFoundError",
    "create_default_registry",
    "AdapterDescriptor",
    "ConfigField",
    "NormalizedItem",
    "SyncCursor",
    "SyncResult",
    "ValidationResult",
]
