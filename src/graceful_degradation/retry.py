"""
Retry Logic with Exponential Backoff

Retry wrapping for callers that want to retry a dependency call before it is
counted against the circuit breaker. ``ServiceConfig.retries`` is passed
through unchanged so callers can build a matching RetryConfig.
"""

import asyncio
import inspect
import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

from .config import ServiceConfig
from .errors import CircuitOpenError, RetryExhaustedError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    initial_delay: float = 1.0  # Initial delay in seconds
    max_delay: float = 8.0  # Maximum delay in seconds
    backoff_multiplier: float = 2.0

    jitter: bool = False
    jitter_range: float = 0.1  # Jitter as fraction of delay (0.1 = +/-10%)

    retryable_exceptions: tuple[type[BaseException], ...] = (
        ConnectionError,
        TimeoutError,
        OSError,
    )
    non_retryable_exceptions: tuple[type[BaseException], ...] = (
        CircuitOpenError,
        ValueError,
        TypeError,
        KeyError,
    )
    # Overrides the exception tuples when set
    should_retry: Callable[[BaseException], bool] | None = None

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.initial_delay < 0:
            raise ValueError("initial_delay must be non-negative")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")
        if not 0 <= self.jitter_range <= 1:
            raise ValueError("jitter_range must be between 0 and 1")

    @classmethod
    def from_service_config(cls, config: ServiceConfig, **overrides: Any) -> "RetryConfig":
        """Build a RetryConfig using the service's ``retries`` setting."""
        return cls(max_retries=config.retries, **overrides)


class ExponentialBackoff:
    """Exponential backoff calculator with optional jitter."""

    def __init__(self, config: RetryConfig) -> None:
        self.config = config

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay before the retry following ``attempt`` (0-based).

        Returns:
            Delay in seconds
        """
        if attempt < 0:
            return 0.0

        delay = min(
            self.config.initial_delay * (self.config.backoff_multiplier**attempt),
            self.config.max_delay,
        )

        if self.config.jitter and delay > 0:
            jitter_amount = delay * self.config.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay

    def get_delays(self, max_attempts: int) -> list[float]:
        return [self.get_delay(i) for i in range(max_attempts)]


def is_retryable_exception(exception: BaseException, config: RetryConfig) -> bool:
    """
    Check if an exception is retryable based on configuration.

    Non-retryable exceptions take precedence over retryable ones; unknown
    exceptions are not retried.
    """
    if config.should_retry is not None:
        return config.should_retry(exception)
    if isinstance(exception, config.non_retryable_exceptions):
        return False
    return isinstance(exception, config.retryable_exceptions)


async def retry_with_backoff(
    func: Callable[..., Any],
    *args: Any,
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> Any:
    """
    Execute a sync or async function with retry and exponential backoff.

    Non-retryable exceptions are re-raised immediately.

    Raises:
        RetryExhaustedError: When every attempt failed with a retryable error
    """
    config = config or RetryConfig()
    backoff = ExponentialBackoff(config)
    func_name = getattr(func, "__name__", repr(func))

    start_time = time.monotonic()
    last_exception: BaseException | None = None

    for attempt in range(config.max_retries + 1):  # +1 for initial attempt
        try:
            result = func(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result

            if attempt > 0:
                logger.info(f"Retry succeeded for {func_name} on attempt {attempt + 1}")
            return result

        except Exception as e:
            last_exception = e

            if not is_retryable_exception(e, config):
                logger.warning(f"Non-retryable exception for {func_name}: {e}")
                raise

            if attempt >= config.max_retries:
                logger.error(f"Max retries ({config.max_retries}) reached for {func_name}: {e}")
                break

            delay = backoff.get_delay(attempt)
            logger.warning(
                f"Retry attempt {attempt + 1}/{config.max_retries} for {func_name} "
                f"after {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)

    raise RetryExhaustedError(
        attempts=config.max_retries + 1,
        last_exception=last_exception,
        total_time=time.monotonic() - start_time,
    ) from last_exception


def retry(config: RetryConfig | None = None) -> Callable[[F], F]:
    """
    Decorator adding retry logic to a function.

    The wrapped function is always async, whether ``func`` is sync or async.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await retry_with_backoff(func, *args, config=config, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
