"""Item store interface and in-memory implementation."""

from abc import ABC, abstractmethod
from datetime import datetime, timezone

from feedsync.adapters.schemas import NormalizedItem
from feedsync.items.schemas import ItemQuery

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(item: NormalizedItem) -> datetime:
    return item.published_at or _EPOCH


class ItemStore(ABC):
    """Durable collection of normalized items, upserted by id."""

    @abstractmethod
    async def upsert(self, items: list[NormalizedItem]) -> int:
        """Insert or update items by id. Returns the number processed."""
        ...

    @abstractmethod
    async def query(self, query: ItemQuery) -> list[NormalizedItem]:
        """Return matching items, newest publication first."""
        ...

    @abstractmethod
    async def delete_by_source(self, source_id: str) -> int:
        """Delete every item owned by a source. Returns the number deleted."""
        ...

    @abstractmethod
    async def prune(self, older_than: datetime) -> int:
        """Delete dated items published before older_than."""
        ...

    @abstractmethod
    async def count(self) -> int:
        ...


class InMemoryItemStore(ItemStore):
    """Dict-backed item store used in tests and single-process runs."""

    def __init__(self) -> None:
        self._items: dict[str, NormalizedItem] = {}

    async def upsert(self, items: list[NormalizedItem]) -> int:
        for item in items:
            self._items[item.id] = item
        return len(items)

    async def query(self, query: ItemQuery) -> list[NormalizedItem]:
        result = list(self._items.values())

        if query.source_ids is not None:
            ids = set(query.source_ids)
            result = [it for it in result if it.source_id in ids]

        if query.kinds:
            kinds = set(query.kinds)
            result = [it for it in result if it.source_kind in kinds]

        if query.tags:
            wanted = set(query.tags)
            result = [
                it for it in result
                if wanted.intersection(query.source_tags.get(it.source_id, ()))
            ]

        if query.text:
            needle = query.text.lower()
            result = [
                it for it in result
                if needle in it.title.lower() or needle in it.snippet.lower()
            ]

        if query.since is not None:
            result = [
                it for it in result
                if it.published_at is not None and it.published_at >= query.since
            ]

        result.sort(key=_sort_key, reverse=True)
        return result[: query.limit]

    async def delete_by_source(self, source_id: str) -> int:
        doomed = [k for k, it in self._items.items() if it.source_id == source_id]
        for key in doomed:
            del self._items[key]
        return len(doomed)

    async def prune(self, older_than: datetime) -> int:
        doomed = [
            k for k, it in self._items.items()
            if it.published_at is not None and it.published_at < older_than
        ]
        for key in doomed:
            del self._items[key]
        return len(doomed)

    async def count(self) -> int:
        return len(self._items)
