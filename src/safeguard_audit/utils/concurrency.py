"""Thread-offload helpers behind ``RuleEngine.run_checks_async``."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

T = TypeVar("T")


class BoundedSemaphore:
    """``asyncio.Semaphore`` that also reports how many permits are held and the high-water mark."""

    def __init__(self, limit: int) -> None:
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.limit = limit
        self.in_use = 0
        self.peak = 0
        self._permits = asyncio.Semaphore(limit)

    async def acquire(self) -> None:
        await self._permits.acquire()
        self.in_use += 1
        if self.in_use > self.peak:
            self.peak = self.in_use

    def release(self) -> None:
        if not self.in_use:
            raise RuntimeError("release called more times than acquire")
        self.in_use -= 1
        self._permits.release()

    @asynccontextmanager
    async def permit(self) -> AsyncIterator[None]:
        await self.acquire()
        try:
            yield
        finally:
            self.release()

    def snapshot(self) -> dict[str, int]:
        return {
            "limit": self.limit,
            "in_use": self.in_use,
            "available": self.limit - self.in_use,
            "peak": self.peak,
        }


async def run_blocking_bounded(
    calls: Sequence[Callable[[], T]],
    *,
    max_concurrency: int,
) -> list[T]:
    """Run each blocking call in a worker thread, ``max_concurrency`` at a time.

    Results come back in input order. If a call raises, the first such error is
    re-raised once every other call has completed.
    """

    slots = BoundedSemaphore(max_concurrency)

    async def offload(call: Callable[[], T]) -> T:
        async with slots.permit():
            return await asyncio.to_thread(call)

    outcomes = await asyncio.gather(*map(offload, calls), return_exceptions=True)
    failure = next((item for item in outcomes if isinstance(item, BaseException)), None)
    if failure is not None:
        raise failure
    return list(outcomes)  # type: ignore[arg-type]


__all__ = ["BoundedSemaphore", "run_blocking_bounded"]
