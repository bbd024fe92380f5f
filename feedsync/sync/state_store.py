"""Sync state store interface and in-memory implementation."""

import copy
from abc import ABC, abstractmethod

from feedsync.sync.schemas import SyncState


class SyncStateStore(ABC):
    """Durable per-source sync bookkeeping. At most one record per source."""

    @abstractmethod
    async def get(self, source_id: str) -> SyncState | None:
        ...

    @abstractmethod
    async def save(self, state: SyncState) -> None:
        ...

    @abstractmethod
    async def all(self) -> list[SyncState]:
        ...

    @abstractmethod
    async def delete(self, source_id: str) -> bool:
        """Remove a record; only called when its source is deleted."""
        ...


class InMemorySyncStateStore(SyncStateStore):
    """Dict-backed state store. Returns copies so callers cannot mutate it."""

    def __init__(self) -> None:
        self._states: dict[str, SyncState] = {}

    async def get(self, source_id: str) -> SyncState | None:
        state = self._states.get(source_id)
        return copy.deepcopy(state) if state is not None else None

    async def save(self, state: SyncState) -> None:
        self._states[state.source_id] = copy.deepcopy(state)

    async def all(self) -> list[SyncState]:
        return [copy.deepcopy(s) for s in self._states.values()]

    async def delete(self, source_id: str) -> bool:
        return self._states.pop(source_id, None) is not None
