"""Kind-keyed lookup of source adapters."""

import logging

from feedsync.adapters.base import SourceAdapter
from feedsync.adapters.github_adapter import GitHubAdapter
from feedsync.adapters.http_client import RetryConfig
from feedsync.adapters.mock_adapter import MockAdapter
from feedsync.adapters.rss_adapter import RssAdapter
from feedsync.adapters.schemas import AdapterDescriptor
from feedsync.adapters.youtube_adapter import YouTubeAdapter
from feedsync.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class AdapterKindNotFoundError(LookupError):
    """Raised when no adapter is registered for a source kind.

    Adapters are wired at startup, so this signals a programming or
    configuration error and is never retried.
    """

    def __init__(self, kind: str) -> None:
        super().__init__(f"Unknown source kind: {kind}")
        self.kind = kind


class AdapterRegistry:
    """
    Map of source kind to adapter instance.

    Usage:
        registry = AdapterRegistry()
        registry.register(RssAdapter())
        adapter = registry.get("rss")
    """

    def __init__(self, adapters: list[SourceAdapter] | None = None) -> None:
        self._adapters: dict[str, SourceAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        """Register an adapter; a later registration for the same kind wins."""
        if adapter.kind in self._adapters:
            logger.info("Replacing adapter for kind %s", adapter.kind)
        self._adapters[adapter.kind] = adapter

    def get(self, kind: str) -> SourceAdapter:
        """Return the adapter for kind, raising AdapterKindNotFoundError if absent."""
        try:
            return self._adapters[kind]
        except KeyError:
            raise AdapterKindNotFoundError(kind) from None

    def has(self, kind: str) -> bool:
        return kind in self._adapters

    def all(self) -> list[SourceAdapter]:
        return list(self._adapters.values())

    def kinds(self) -> list[str]:
        return list(self._adapters.keys())

    def describe_all(self) -> list[AdapterDescriptor]:
        """Display metadata and config schema of every registered adapter."""
        return [adapter.describe() for adapter in self._adapters.values()]

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, kind: object) -> bool:
        return kind in self._adapters


def create_default_registry(
    settings: Settings | None = None,
    use_mock: bool = False,
) -> AdapterRegistry:
    """
    Build a registry with the built-in adapters.

    Args:
        settings: Application settings (GitHub token, HTTP tuning)
        use_mock: Also register the synthetic "mock" kind
    """
    settings = settings or get_settings()
    retry_config = RetryConfig(
        max_retries=settings.max_http_retries,
        max_backoff_seconds=settings.max_backoff_seconds,
    )
    registry = AdapterRegistry(
        [
            RssAdapter(retry_config=retry_config, timeout=settings.http_timeout_seconds),
            YouTubeAdapter(retry_config=retry_config, timeout=settings.http_timeout_seconds),
            GitHubAdapter(
                token=settings.github_token,
                retry_config=retry_config,
                timeout=settings.http_timeout_seconds,
            ),
        ]
    )
    if use_mock:
        registry.register(MockAdapter())
    return registry
