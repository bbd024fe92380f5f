"""
FIFO capacity limiter for bounding concurrent fetches.

Waiters are served strictly in arrival order and a release hands the slot
directly to exactly one waiter, so a burst of new arrivals cannot overtake
tasks that are already queued.
"""

import asyncio
from collections import deque
from types import TracebackType


class CapacityLimiter:
    """
    Async counting limiter with FIFO hand-off.

    Usage:
        limiter = CapacityLimiter(4, name="global")
        async with limiter:
            await fetch()
    """

    def __init__(self, capacity: int, name: str = "limiter") -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._name = name
        self._in_use = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        """Number of slots currently held."""
        return self._in_use

    @property
    def waiting(self) -> int:
        """Number of tasks queued for a slot."""
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        """Take a slot, suspending in FIFO order while none is free."""
        if self._in_use < self._capacity and not self.waiting:
            self._in_use += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            # Slot was handed over just before cancellation: pass it on.
            if waiter.done() and not waiter.cancelled():
                self.release()
            raise
        finally:
            try:
                self._waiters.remove(waiter)
            except ValueError:
                pass

    def release(self) -> None:
        """Return a slot, handing it to the oldest live waiter if any."""
        if self._in_use <= 0:
            raise RuntimeError(f"{self._name}: release() without acquire()")
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Slot ownership transfers; in_use is unchanged.
                waiter.set_result(None)
                return
        self._in_use -= 1

    async def __aenter__(self) -> "CapacityLimiter":
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()

    def __repr__(self) -> str:
        return (
            f"CapacityLimiter(name={self._name!r}, in_use={self._in_use}, "
            f"capacity={self._capacity}, waiting={self.waiting})"
        )
