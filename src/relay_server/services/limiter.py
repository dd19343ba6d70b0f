"""FIFO concurrency limiter for async operations.

Used to bound simultaneous tool executions and provider requests. Waiting
operations are admitted strictly in submission order: a releasing operation
hands its slot directly to the oldest waiter.

A limited operation must not submit work to the same limiter instance and
await it, since the inner call can queue behind its own caller.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 5

T = TypeVar("T")


class ConcurrencyLimiter:
    """Bound the number of in-flight operations to ``limit``.

    Attributes:
        limit: Maximum number of operations running at once
    """

    def __init__(self, limit: int | None = DEFAULT_CONCURRENCY_LIMIT) -> None:
        self.limit = limit if limit and limit > 0 else DEFAULT_CONCURRENCY_LIMIT
        self._active = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def active(self) -> int:
        """Number of operations currently holding a slot."""
        return self._active

    @property
    def pending(self) -> int:
        """Number of operations waiting for a slot."""
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def run(
        self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Run ``operation(*args, **kwargs)`` once a slot is free.

        The operation's result or exception is passed through unchanged.
        """
        await self._acquire()
        try:
            return await operation(*args, **kwargs)
        finally:
            self._release()

    async def _acquire(self) -> None:
        if self._active < self.limit and not self.pending:
            self._active += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            # The slot may have been handed over just before cancellation.
            if waiter.done() and not waiter.cancelled():
                self._release()
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Hand the slot over; the active count stays the same.
                waiter.set_result(None)
                return
        self._active -= 1
