"""Single-loop deadline scheduler.

Holds one pending deadline per key in a heapq min-heap ordered by event loop
time. Rescheduling or cancelling a key bumps its generation; heap entries
with a stale generation are skipped when they surface (lazy invalidation),
so neither operation has to search the heap.
"""

import asyncio
import heapq
from collections.abc import Awaitable, Callable

from conductor.infrastructure.logger import get_logger

logger = get_logger(__name__)

ExpiryCallback = Callable[[str], Awaitable[None]]


class DeadlineQueue:
    """Fires ``on_expire(key)`` once each armed deadline passes."""

    def __init__(self, on_expire: ExpiryCallback):
        self.on_expire = on_expire
        self._heap: list[tuple[float, int, str]] = []
        self._generations: dict[str, int] = {}
        self._counter = 0
        self._wake = asyncio.Event()
        self._loop_task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._generations)

    def __contains__(self, key: str) -> bool:
        return key in self._generations

    def schedule(self, key: str, delay_s: float) -> None:
        """Arm (or re-arm) the deadline for ``key`` ``delay_s`` seconds from now."""
        self._counter += 1
        self._generations[key] = self._counter
        when = asyncio.get_running_loop().time() + max(0.0, delay_s)
        heapq.heappush(self._heap, (when, self._counter, key))
        self._wake.set()

    def cancel(self, key: str) -> bool:
        """Disarm ``key``; False if nothing was armed."""
        return self._generations.pop(key, None) is not None

    def next_deadline(self) -> float | None:
        """Loop time of the earliest live deadline."""
        self._discard_stale()
        return self._heap[0][0] if self._heap else None

    def pop_due(self, now: float) -> list[str]:
        """Remove and return every live key whose deadline is at or before ``now``."""
        due: list[str] = []
        while self._heap and self._heap[0][0] <= now:
            _, generation, key = heapq.heappop(self._heap)
            if self._generations.get(key) == generation:
                del self._generations[key]
                due.append(key)
        return due

    def _discard_stale(self) -> None:
        while self._heap and self._generations.get(self._heap[0][2]) != self._heap[0][1]:
            heapq.heappop(self._heap)

    async def start(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run())
            logger.debug("deadline_queue_started", armed=len(self))

    async def stop(self) -> None:
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
        self._loop_task = None

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            self._wake.clear()
            deadline = self.next_deadline()
            if deadline is None:
                await self._wake.wait()
                continue

            delay = deadline - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=delay)
                    # Woken by a schedule call; recompute the earliest deadline
                    continue
                except asyncio.TimeoutError:
                    pass

            for key in self.pop_due(loop.time()):
                try:
                    await self.on_expire(key)
                except Exception as e:
                    logger.error("deadline_expiry_failed", key=key, error=str(e))
