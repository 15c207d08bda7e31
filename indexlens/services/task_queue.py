"""
Rate-limited task queue for batch jobs.

The provider is the throttled resource, so batch work runs with a small
concurrency limit (1 by default) and a fixed pause after each task before
its slot is released.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class RateLimitedTaskQueue:
    def __init__(self, concurrency: int = 1, delay_s: float = 0.15):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self.delay_s = max(0.0, delay_s)

    async def map(
        self,
        worker: Callable[[T], Awaitable[R]],
        items: Iterable[T],
        on_error: Callable[[T, Exception], R] | None = None,
    ) -> list[R]:
        """
        Run worker over items; results keep input order. A worker exception is
        turned into a result by on_error when given, otherwise it propagates.
        """
        items = list(items)
        sem = asyncio.Semaphore(self.concurrency)
        results: list[Any] = [None] * len(items)

        async def run(idx: int, item: T) -> None:
            async with sem:
                try:
                    results[idx] = await worker(item)
                except Exception as exc:
                    if on_error is None:
                        raise
                    logger.warning("[Queue] task %d failed: %s", idx, exc)
                    results[idx] = on_error(item, exc)
                finally:
                    if self.delay_s and idx < len(items) - 1:
                        await asyncio.sleep(self.delay_s)

        if self.concurrency == 1:
            for idx, item in enumerate(items):
                await run(idx, item)
        else:
            await asyncio.gather(*(run(i, item) for i, item in enumerate(items)))
        return results
