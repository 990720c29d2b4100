"""
Bounded concurrency executor for bulk ESP jobs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SettledResult(Generic[T]):
    """Outcome of one task: either a value or the exception it raised."""

    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_with_concurrency_limit(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    limit: int,
) -> List[SettledResult[T]]:
    """
    Run every task exactly once with at most *limit* in flight.

    Parameters
    ----------
    tasks : sequence of zero-argument coroutine functions
    limit : int
        Ceiling on concurrently running tasks; values below 1 mean 1.

    Returns
    -------
    One ``SettledResult`` per task, in task order.  A failing task is logged
    and reported in its slot; it never aborts the others and the executor
    itself does not raise.
    """
    semaphore = asyncio.Semaphore(max(1, int(limit)))

    async def _run(index: int, task: Callable[[], Awaitable[Any]]) -> SettledResult:
        async with semaphore:
            try:
                return SettledResult(value=await task())
            except Exception as exc:
                logger.warning("Bulk task %d failed: %s", index, exc)
                return SettledResult(error=exc)

    return list(await asyncio.gather(*(_run(i, t) for i, t in enumerate(tasks))))
