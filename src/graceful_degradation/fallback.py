"""
Fallback Chains

Ordered, priority-sorted alternative ways to satisfy a request when the
primary path fails. Strategies are attempted one at a time, highest priority
first, until one succeeds.
"""

import asyncio
import inspect
import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, Protocol, TypeVar, runtime_checkable

from .errors import (
    FallbackExhaustedError,
    NoStrategiesAvailableError,
    OperationTimeoutError,
    StrategyFailure,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class FallbackStrategy(Protocol):
    """A single way of producing a result. May return a value or an awaitable."""

    name: str

    def attempt(self, *args: Any, **kwargs: Any) -> Any: ...


class FunctionStrategy:
    """Adapts a plain or async callable to the FallbackStrategy protocol."""

    def __init__(self, func: Callable[..., Any], name: str | None = None) -> None:
        self.func = func
        self.name = name or getattr(func, "__name__", repr(func))

    def attempt(self, *args: Any, **kwargs: Any) -> Any:
        return self.func(*args, **kwargs)

    def __repr__(self) -> str:
        return f"FunctionStrategy(name='{self.name}')"


def as_strategy(
    strategy: FallbackStrategy | Callable[..., Any], name: str | None = None
) -> FallbackStrategy:
    """Coerce a callable into a FallbackStrategy, leaving strategies untouched."""
    if isinstance(strategy, FallbackStrategy) and not isinstance(strategy, FunctionStrategy):
        return strategy
    if isinstance(strategy, FunctionStrategy):
        return FunctionStrategy(strategy.func, name or strategy.name)
    if callable(strategy):
        return FunctionStrategy(strategy, name)
    raise TypeError(f"Fallback strategy must be callable or define attempt(): {strategy!r}")


@dataclass(frozen=True)
class RankedStrategy:
    strategy: FallbackStrategy
    priority: int

    @property
    def name(self) -> str:
        return self.strategy.name


class FallbackResult(Generic[T]):
    """Result of a fallback chain execution."""

    def __init__(self, value: T, index: int, source: str, failures: list[StrategyFailure]) -> None:
        self.value = value
        self.index = index
        self.source = source
        self.failures = failures

    @property
    def used_primary(self) -> bool:
        return self.index == 0

    def __repr__(self) -> str:
        return (
            f"FallbackResult(source='{self.source}', index={self.index}, "
            f"failures={len(self.failures)})"
        )


async def run_callable(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Await coroutine functions; run blocking callables in a worker thread."""
    if inspect.iscoroutinefunction(func):
        return await func(*args, **kwargs)
    result = await asyncio.to_thread(func, *args, **kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


class FallbackChain:
    """
    Priority-ordered list of fallback strategies for one capability.

    When a non-primary strategy satisfies a call the chain records that the
    primary should be retried first on the next call. The stored order never
    changes, so every call already begins at the primary; the marker exists
    for observability and is cleared by ``reset()`` or the next primary
    success.

    Each attempt is bounded by ``timeout`` seconds when one is given; a
    strategy that runs out of time fails with OperationTimeoutError and the
    chain moves on. Blocking strategies run in a worker thread.
    """

    def __init__(self, name: str, timeout: float | None = None) -> None:
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        self.name = name
        self.timeout = timeout
        self._strategies: list[RankedStrategy] = []
        self._retry_primary = False
        self._lock = threading.Lock()
        self.metrics: dict[str, int] = defaultdict(int)

    @property
    def strategies(self) -> list[RankedStrategy]:
        with self._lock:
            return list(self._strategies)

    @property
    def primary_pending(self) -> bool:
        """True when the last success came from a non-primary strategy."""
        return self._retry_primary

    def __len__(self) -> int:
        return len(self._strategies)

    def add_strategy(
        self,
        strategy: FallbackStrategy | Callable[..., Any],
        priority: int = 0,
        name: str | None = None,
    ) -> None:
        """
        Add a strategy and keep the list sorted by descending priority.

        Equal priorities keep insertion order.
        """
        ranked = RankedStrategy(as_strategy(strategy, name), priority)
        with self._lock:
            self._strategies.append(ranked)
            self._strategies.sort(key=lambda item: item.priority, reverse=True)
        logger.debug(f"{self.name}: added strategy '{ranked.name}' with priority {priority}")

    async def execute(self, *args: Any, **kwargs: Any) -> Any:
        """
        Run strategies in priority order and return the first success.

        Raises:
            NoStrategiesAvailableError: If no strategy is registered
            FallbackExhaustedError: If every strategy failed
        """
        result = await self.execute_with_result(*args, **kwargs)
        return result.value

    async def execute_with_result(self, *args: Any, **kwargs: Any) -> FallbackResult[Any]:
        """Like ``execute`` but also reports which strategy produced the value."""
        strategies = self.strategies
        if not strategies:
            raise NoStrategiesAvailableError(self.name)

        with self._lock:
            self.metrics["total_calls"] += 1
        failures: list[StrategyFailure] = []

        for index, ranked in enumerate(strategies):
            try:
                value = await self._attempt(ranked, args, kwargs)
            except Exception as e:
                failures.append(StrategyFailure(index=index, name=ranked.name, error=e))
                with self._lock:
                    self.metrics[f"{ranked.name}_failures"] += 1
                logger.warning(
                    f"{self.name}: Strategy {index} ({ranked.name}) failed, trying next: {e}"
                )
                continue

            with self._lock:
                self.metrics[f"{ranked.name}_successes"] += 1
                if index > 0:
                    logger.info(
                        f"{self.name}: Fallback strategy {index} ({ranked.name}) succeeded, "
                        f"primary will be retried first"
                    )
                    self._retry_primary = True
                else:
                    self._retry_primary = False
            return FallbackResult(value, index, ranked.name, failures)

        with self._lock:
            self.metrics["exhausted"] += 1
        raise FallbackExhaustedError(self.name, failures)

    async def _attempt(
        self, ranked: RankedStrategy, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> Any:
        strategy = ranked.strategy
        target = strategy.func if isinstance(strategy, FunctionStrategy) else strategy.attempt
        if self.timeout is None:
            return await run_callable(target, *args, **kwargs)
        try:
            return await asyncio.wait_for(
                run_callable(target, *args, **kwargs), timeout=self.timeout
            )
        except TimeoutError as e:
            raise OperationTimeoutError(f"{self.name}:{ranked.name}", self.timeout) from e

    def reset(self) -> None:
        """Clear the non-primary marker so the next call starts at index 0."""
        with self._lock:
            self._retry_primary = False
        logger.debug(f"{self.name}: fallback chain reset")

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "strategies": [
                    {"name": item.name, "priority": item.priority} for item in self._strategies
                ],
                "primary_pending": self._retry_primary,
                "metrics": dict(self.metrics),
            }


async def with_timeout(
    func: Callable[..., Any], timeout: float, *args: Any, **kwargs: Any
) -> Any:
    """
    Run ``func`` and give up after ``timeout`` seconds.

    Raises:
        OperationTimeoutError: If ``func`` did not finish in time
    """
    name = getattr(func, "__name__", repr(func))
    try:
        return await asyncio.wait_for(run_callable(func, *args, **kwargs), timeout=timeout)
    except TimeoutError as e:
        raise OperationTimeoutError(name, timeout) from e


async def with_fallback(
    primary: Callable[[], Any], fallback: Callable[[], Any], name: str = "Operation"
) -> Any:
    """
    Return ``primary()``, or ``fallback()`` when the primary raises.

    A single-step alternative to a FallbackChain. When the fallback fails as
    well its error propagates, chained to the primary's.
    """
    try:
        return await run_callable(primary)
    except Exception as primary_error:
        logger.warning(f"{name} failed, using fallback: {primary_error}")
        try:
            result = await run_callable(fallback)
        except Exception as fallback_error:
            logger.error(
                f"{name} fallback also failed. "
                f"Primary: {primary_error}, Fallback: {fallback_error}"
            )
            raise
        logger.info(f"{name} fallback succeeded")
        return result


@dataclass(frozen=True)
class StaleEntry:
    """Previously stored value and the wall-clock time it was stored at."""

    value: Any
    timestamp: float | None = None


@dataclass(frozen=True)
class StaleResult(Generic[T]):
    """Value from ``stale_while_revalidate`` with its freshness."""

    value: T
    is_stale: bool
    age: float | None = None


async def stale_while_revalidate(
    fetch: Callable[[], Any],
    get_stale: Callable[[], Any],
    max_stale_age: float = 300.0,
    name: str = "Operation",
    clock: Callable[[], float] = time.time,
) -> StaleResult[Any]:
    """
    Fetch fresh data, serving stored data when the fetch fails.

    ``get_stale`` may return a StaleEntry to have its age checked against
    ``max_stale_age``; any other value is served with an unknown age.

    Args:
        fetch: Produces fresh data
        get_stale: Produces previously stored data
        max_stale_age: Oldest acceptable stored data, in seconds
        name: Operation name for log messages
        clock: Wall-clock time source matching StaleEntry.timestamp

    Returns:
        StaleResult with ``is_stale`` set when stored data was served

    Raises:
        Exception: The fetch error, when stored data is missing or too old
    """
    try:
        return StaleResult(await run_callable(fetch), is_stale=False, age=0.0)
    except Exception as fetch_error:
        logger.warning(f"{name} failed, attempting to use stale data: {fetch_error}")
        try:
            stale = await run_callable(get_stale)
        except Exception as stale_error:
            logger.error(
                f"{name} stale data also unavailable. "
                f"Fetch: {fetch_error}, Stale: {stale_error}"
            )
            raise fetch_error

        if not isinstance(stale, StaleEntry):
            stale = StaleEntry(stale)
        if stale.timestamp is None:
            logger.info(f"{name} using stale data (age unknown)")
            return StaleResult(stale.value, is_stale=True)

        age = clock() - stale.timestamp
        if age > max_stale_age:
            logger.error(f"{name} stale data too old ({age:.0f}s, max {max_stale_age:.0f}s)")
            raise fetch_error
        logger.info(f"{name} using stale data ({age:.0f}s old)")
        return StaleResult(stale.value, is_stale=True, age=age)
