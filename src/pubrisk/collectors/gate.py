"""FIFO admission control for outbound API requests."""

import asyncio
from collections import deque


class ConcurrencyGate:
    """Counting semaphore that wakes waiters strictly in arrival order.

    ``release()`` hands the freed slot directly to the oldest waiter instead
    of returning it to the pool, so a newcomer can never overtake a task that
    is already queued.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"Gate capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._available = capacity
        self._waiters: deque[asyncio.Future] = deque()
        self.in_use = 0
        self.peak = 0

    async def acquire(self) -> None:
        if self._available > 0 and not self._waiters:
            self._available -= 1
            self._mark_acquired()
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was handed over just before cancellation; pass it on
                self._mark_acquired()
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise
        self._mark_acquired()

    def release(self) -> None:
        if self.in_use == 0:
            raise RuntimeError("ConcurrencyGate released more times than acquired")
        self.in_use -= 1

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._available += 1

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    def _mark_acquired(self) -> None:
        self.in_use += 1
        self.peak = max(self.peak, self.in_use)

    async def __aenter__(self) -> "ConcurrencyGate":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
