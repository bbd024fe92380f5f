"""Configuration store interface and in-memory implementation."""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from feedsync.sources.schemas import Source


def matches(
    source: Source,
    enabled: bool | None = None,
    kind: str | None = None,
    tags: Iterable[str] | None = None,
) -> bool:
    """Check a source against list() filters. Tags match if any overlaps."""
    if enabled is not None and source.enabled != enabled:
        return False
    if kind and source.kind != kind:
        return False
    if tags:
        wanted = set(tags)
        if wanted and not wanted.intersection(source.tags):
            return False
    return True


class SourceStore(ABC):
    """Owner of configured sources. The sync engine only reads from it."""

    @abstractmethod
    async def list(
        self,
        enabled: bool | None = None,
        kind: str | None = None,
        tags: list[str] | None = None,
    ) -> list[Source]:
        ...

    @abstractmethod
    async def get(self, source_id: str) -> Source | None:
        ...

    @abstractmethod
    async def save(self, source: Source) -> None:
        ...

    @abstractmethod
    async def delete(self, source_id: str) -> bool:
        """Delete a source. Returns True if it existed."""
        ...


class InMemorySourceStore(SourceStore):
    """Process-local source store, ordered by insertion."""

    def __init__(self, sources: Iterable[Source] | None = None) -> None:
        self._sources: dict[str, Source] = {}
        for source in sources or ():
            self._sources[source.id] = source

    async def list(
        self,
        enabled: bool | None = None,
        kind: str | None = None,
        tags: list[str] | None = None,
    ) -> list[Source]:
        return [
            s for s in self._sources.values()
            if matches(s, enabled=enabled, kind=kind, tags=tags)
        ]

    async def get(self, source_id: str) -> Source | None:
        return self._sources.get(source_id)

    async def save(self, source: Source) -> None:
        self._sources[source.id] = source

    async def delete(self, source_id: str) -> bool:
        return self._sources.pop(source_id, None) is not None
