from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class ConcurrencyLimiter:
    """At most `limit` coroutines in flight; the rest wait for a free slot."""

    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._limit = limit
        self._sem = asyncio.Semaphore(limit)
        self._active = 0

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def active(self) -> int:
        return self._active

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        async with self._sem:
            self._active += 1
            try:
                return await factory()
            finally:
                self._active -= 1

    async def map(
        self, items: Iterable[T], worker: Callable[[T], Awaitable[R]]
    ) -> List[R]:
        """
        Results are aligned with the input order. The first worker exception
        propagates; its slot is released like any other.
        """
        return list(
            await asyncio.gather(*(self.run(lambda i=item: worker(i)) for item in items))
        )
