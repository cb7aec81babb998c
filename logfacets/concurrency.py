#!/usr/bin/env python3
"""
Counting gate that bounds the number of in-flight facet queries.
Waiters are admitted strictly in submission order.
"""

from collections import deque
from typing import Any, Awaitable, Callable, Deque
import asyncio


class ConcurrencyLimiter:
    """FIFO-fair async limiter"""

    def __init__(self, max_concurrent: int = 4):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.active = 0
        self._queue: Deque[asyncio.Future] = deque()

    @property
    def waiting(self) -> int:
        return sum(1 for fut in self._queue if not fut.done())

    async def acquire(self):
        if self.active < self.max_concurrent and not self.waiting:
            self.active += 1
            return

        fut = asyncio.get_running_loop().create_future()
        self._queue.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # slot was handed over before we were cancelled
                self.release()
            raise

    def release(self):
        self.active -= 1
        self._admit_next()

    def _admit_next(self):
        while self._queue and self.active < self.max_concurrent:
            fut = self._queue.popleft()
            if fut.done():
                continue
            self.active += 1
            fut.set_result(None)

    async def run(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """Await fn() once a slot is free"""
        async with self:
            return await fn()

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.release()
        return False
