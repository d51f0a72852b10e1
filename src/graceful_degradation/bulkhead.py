"""
Bulkhead

Caps how many calls to one dependency run at the same time so a slow
dependency cannot tie up every worker. Calls beyond the cap wait in a
bounded queue; once the queue is full new calls are rejected immediately.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from .errors import BulkheadFullError
from .fallback import run_callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BulkheadStats:
    """Point-in-time view of a bulkhead."""

    name: str
    running: int
    queued: int
    max_concurrent: int
    max_queue: int | None
    available: int
    total_calls: int
    rejected_calls: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Bulkhead:
    """
    Concurrency limiter for async callers.

    Must be used from a single event loop.

    Example:
        >>> bulkhead = Bulkhead("search", max_concurrent=5, max_queue=20)
        >>> results = await bulkhead.execute(client.search, "query")
    """

    def __init__(self, name: str, max_concurrent: int, max_queue: int | None = None) -> None:
        """
        Args:
            name: Identifier used in logs and errors
            max_concurrent: Calls allowed to run at once
            max_queue: Calls allowed to wait for a slot, None for unbounded
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if max_queue is not None and max_queue < 0:
            raise ValueError("max_queue must be non-negative")

        self.name = name
        self.max_concurrent = max_concurrent
        self.max_queue = max_queue
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._running = 0
        self._queued = 0
        self._total_calls = 0
        self._rejected_calls = 0

    @property
    def running(self) -> int:
        return self._running

    @property
    def queued(self) -> int:
        return self._queued

    async def execute(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run ``func`` once a slot is free.

        Raises:
            BulkheadFullError: If every slot is busy and the queue is full
        """
        self._total_calls += 1

        if self._semaphore.locked():
            if self.max_queue is not None and self._queued >= self.max_queue:
                self._rejected_calls += 1
                logger.warning(
                    f"Bulkhead '{self.name}' full: {self._running} running, "
                    f"{self._queued} queued"
                )
                raise BulkheadFullError(self.name, self.max_queue)
            self._queued += 1
            try:
                await self._semaphore.acquire()
            finally:
                self._queued -= 1
        else:
            await self._semaphore.acquire()

        self._running += 1
        try:
            return await run_callable(func, *args, **kwargs)
        finally:
            self._running -= 1
            self._semaphore.release()

    def get_stats(self) -> BulkheadStats:
        return BulkheadStats(
            name=self.name,
            running=self._running,
            queued=self._queued,
            max_concurrent=self.max_concurrent,
            max_queue=self.max_queue,
            available=self.max_concurrent - self._running,
            total_calls=self._total_calls,
            rejected_calls=self._rejected_calls,
        )

    def __repr__(self) -> str:
        return (
            f"Bulkhead(name='{self.name}', running={self._running}/{self.max_concurrent}, "
            f"queued={self._queued})"
        )
