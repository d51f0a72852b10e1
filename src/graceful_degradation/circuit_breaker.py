"""
Circuit Breaker Pattern Implementation

Per-dependency circuit breaker that fails fast once a dependency is unhealthy
and probes conservatively for recovery.

States:
- CLOSED: normal operation, every call is allowed
- OPEN: failing fast, calls are rejected until reset_timeout elapses
- HALF_OPEN: probing, success_threshold consecutive successes close the circuit
"""

import asyncio
import inspect
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from functools import wraps
from typing import Any, TypeVar, cast

from .errors import CircuitOpenError, OperationTimeoutError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])
T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast
    HALF_OPEN = "half_open"  # Testing recovery


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int = 5  # Failures before opening
    success_threshold: int = 2  # Successes to close from half-open
    open_timeout: float = 60.0  # Seconds before a guarded call counts as timed out
    reset_timeout: float = 30.0  # Seconds spent open before probing
    half_open_max_calls: int | None = None  # Concurrent probes, None for unlimited

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")
        if self.success_threshold <= 0:
            raise ValueError("success_threshold must be positive")
        if self.open_timeout <= 0:
            raise ValueError("open_timeout must be positive")
        if self.reset_timeout < 0:
            raise ValueError("reset_timeout must be non-negative")
        if self.half_open_max_calls is not None and self.half_open_max_calls <= 0:
            raise ValueError("half_open_max_calls must be positive")


@dataclass(frozen=True)
class CircuitStateChange:
    """Notification payload for a breaker state transition."""

    name: str
    old_state: CircuitState
    new_state: CircuitState
    timestamp: datetime


@dataclass(frozen=True)
class CircuitBreakerStats:
    """Point-in-time snapshot of a circuit breaker."""

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    failure_threshold: int
    success_threshold: int
    last_state_change: float
    next_attempt_at: float | None
    total_calls: int
    successful_calls: int
    failed_calls: int
    rejected_calls: int
    state_changes: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


StateChangeListener = Callable[[CircuitStateChange], None]


class CircuitBreaker:
    """
    Thread-safe circuit breaker for a single dependency.

    The breaker only decides whether a call may proceed and tracks outcomes;
    callers report outcomes through ``record_success``/``record_failure`` or
    use ``call``/``call_async`` to do both at once.

    Updates are applied in completion order, so a failure recorded while
    HALF_OPEN re-opens the circuit and a success arriving afterwards cannot
    close it again. A success reported with its ``acquire`` ticket only counts
    towards closing the circuit when the call was admitted in the current
    half-open period.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        on_state_change: StateChangeListener | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize circuit breaker.

        Args:
            name: Unique identifier for this circuit breaker
            config: Configuration (defaults to CircuitBreakerConfig())
            on_state_change: Called after every state transition
            clock: Monotonic time source in seconds
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._on_state_change = on_state_change
        self._clock = clock

        # State management
        self._state = CircuitState.CLOSED
        self._lock = threading.RLock()
        self._state_changed_at = clock()

        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._generation = 0  # bumped on every transition

        # Metrics
        self._total_calls = 0
        self._successful_calls = 0
        self._failed_calls = 0
        self._rejected_calls = 0
        self._state_changes = 0

        logger.info(f"Initialized circuit breaker '{name}' with config: {self.config}")

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        return self._state

    def get_state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_half_open(self) -> bool:
        return self._state == CircuitState.HALF_OPEN

    def allow(self) -> bool:
        """
        Check whether a call may proceed.

        In OPEN state this transitions to HALF_OPEN once reset_timeout has
        elapsed and lets the caller through as a probe.

        Returns:
            True if the call may proceed
        """
        return self.acquire() is not None

    def acquire(self) -> int | None:
        """
        Like ``allow`` but returns an admission ticket instead of a bool.

        Passing the ticket back to ``record_success`` ties the outcome to the
        state the call was admitted in: a call let through while CLOSED that
        finishes after the circuit moved to HALF_OPEN neither counts towards
        closing it nor frees a half-open slot.

        Returns:
            Ticket for an admitted call, None if the call was refused
        """
        with self._lock:
            self._total_calls += 1

            if self._state == CircuitState.OPEN:
                if self._time_until_retry() > 0:
                    self._rejected_calls += 1
                    logger.debug(
                        f"Circuit breaker '{self.name}' open, rejecting call. "
                        f"Retry in {self._time_until_retry():.1f}s"
                    )
                    return None
                change = self._transition(CircuitState.HALF_OPEN)
            else:
                change = None

            ticket: int | None = self._generation
            if self._state == CircuitState.HALF_OPEN:
                limit = self.config.half_open_max_calls
                if limit is not None and self._half_open_calls >= limit:
                    self._rejected_calls += 1
                    ticket = None
                    logger.debug(
                        f"Circuit breaker '{self.name}' half-open limit reached, rejecting call"
                    )
                else:
                    self._half_open_calls += 1

        self._notify(change)
        return ticket

    def record_success(self, ticket: int | None = None) -> None:
        """
        Record a successful call.

        Args:
            ticket: Value returned by ``acquire`` for this call (optional)
        """
        with self._lock:
            self._successful_calls += 1
            change = None

            if self._state == CircuitState.CLOSED:
                self._failure_count = 0
            elif self._state == CircuitState.HALF_OPEN:
                if ticket is not None and ticket != self._generation:
                    logger.debug(
                        f"Circuit breaker '{self.name}' ignoring success of a call "
                        f"admitted before the half-open period"
                    )
                    return
                self._success_count += 1
                self._release_probe()
                logger.debug(
                    f"Circuit breaker '{self.name}' half-open success "
                    f"({self._success_count}/{self.config.success_threshold})"
                )
                if self._success_count >= self.config.success_threshold:
                    change = self._transition(CircuitState.CLOSED)

        self._notify(change)

    def record_failure(self, exception: BaseException | None = None) -> None:
        """
        Record a failed call.

        Args:
            exception: Exception that caused the failure (optional)
        """
        with self._lock:
            self._failed_calls += 1
            change = None
            exc_info = f": {type(exception).__name__}: {exception}" if exception else ""

            if self._state == CircuitState.CLOSED:
                self._failure_count += 1
                logger.warning(
                    f"Circuit breaker '{self.name}' failure "
                    f"({self._failure_count}/{self.config.failure_threshold}){exc_info}"
                )
                if self._failure_count >= self.config.failure_threshold:
                    change = self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.HALF_OPEN:
                logger.warning(f"Circuit breaker '{self.name}' probe failed{exc_info}")
                change = self._transition(CircuitState.OPEN)

        self._notify(change)

    def reset(self) -> None:
        """Force the circuit closed with zeroed counters."""
        with self._lock:
            logger.info(f"Circuit breaker '{self.name}': Manual reset")
            change = self._transition(CircuitState.CLOSED)
            self._failure_count = 0
            self._success_count = 0
            self._half_open_calls = 0
            self._total_calls = 0
            self._successful_calls = 0
            self._failed_calls = 0
            self._rejected_calls = 0

        self._notify(change)

    def get_stats(self) -> CircuitBreakerStats:
        """Get a read-only snapshot of state and counters."""
        with self._lock:
            return CircuitBreakerStats(
                name=self.name,
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                failure_threshold=self.config.failure_threshold,
                success_threshold=self.config.success_threshold,
                last_state_change=self._state_changed_at,
                next_attempt_at=self._next_attempt_at(),
                total_calls=self._total_calls,
                successful_calls=self._successful_calls,
                failed_calls=self._failed_calls,
                rejected_calls=self._rejected_calls,
                state_changes=self._state_changes,
            )

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Execute a function call through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit refuses the call
            Exception: Any exception from the wrapped function
        """
        ticket = self.acquire()
        if ticket is None:
            raise CircuitOpenError(self.name, self.time_until_retry())

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success(ticket)
        return result

    async def call_async(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Execute an async function call through the circuit breaker.

        The call is bounded by ``config.open_timeout``. Cancellation counts as
        a failure so a half-open probe is always resolved.

        Raises:
            CircuitOpenError: If the circuit refuses the call
            OperationTimeoutError: If the call exceeds open_timeout
            Exception: Any exception from the wrapped function
        """
        ticket = self.acquire()
        if ticket is None:
            raise CircuitOpenError(self.name, self.time_until_retry())

        try:
            result = await asyncio.wait_for(
                func(*args, **kwargs), timeout=self.config.open_timeout
            )
        except TimeoutError as e:
            error = OperationTimeoutError(self.name, self.config.open_timeout)
            self.record_failure(error)
            raise error from e
        except asyncio.CancelledError as e:
            self.record_failure(e)
            raise
        except Exception as e:
            self.record_failure(e)
            raise

        self.record_success(ticket)
        return result

    def __call__(self, func: F) -> F:
        """Decorator for wrapping functions with this circuit breaker."""
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await self.call_async(func, *args, **kwargs)

            return cast(F, async_wrapper)
        else:

            @wraps(func)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                return self.call(func, *args, **kwargs)

            return cast(F, wrapper)

    def time_until_retry(self) -> float:
        """Seconds until an open circuit lets a probe through (0 when not open)."""
        with self._lock:
            return self._time_until_retry()

    def _time_until_retry(self) -> float:
        if self._state != CircuitState.OPEN:
            return 0.0
        elapsed = self._clock() - self._state_changed_at
        return max(0.0, self.config.reset_timeout - elapsed)

    def _next_attempt_at(self) -> float | None:
        if self._state != CircuitState.OPEN:
            return None
        return self._state_changed_at + self.config.reset_timeout

    def _release_probe(self) -> None:
        if self._half_open_calls > 0:
            self._half_open_calls -= 1

    def _transition(self, new_state: CircuitState) -> CircuitStateChange | None:
        """Move to ``new_state`` and reset counters. Caller holds the lock."""
        old_state = self._state
        if old_state == new_state:
            return None

        self._state = new_state
        self._state_changed_at = self._clock()
        self._state_changes += 1
        self._generation += 1
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0

        if new_state == CircuitState.OPEN:
            logger.warning(
                f"Circuit breaker '{self.name}': Opening circuit, "
                f"retry in {self.config.reset_timeout}s"
            )
        elif new_state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker '{self.name}': Attempting recovery (half-open)")
        else:
            logger.info(f"Circuit breaker '{self.name}': Circuit recovered (closed)")

        return CircuitStateChange(
            name=self.name,
            old_state=old_state,
            new_state=new_state,
            timestamp=datetime.now(UTC),
        )

    def _notify(self, change: CircuitStateChange | None) -> None:
        if change is None or self._on_state_change is None:
            return
        try:
            self._on_state_change(change)
        except Exception as e:
            logger.error(f"State change listener failed for '{self.name}': {e}")

    def __str__(self) -> str:
        return f"CircuitBreaker(name='{self.name}', state={self._state.value})"


def with_circuit_breaker(
    func: F, name: str | None = None, config: CircuitBreakerConfig | None = None
) -> F:
    """
    Wrap a function with its own private circuit breaker.

    Args:
        func: Sync or async function to protect
        name: Breaker name (defaults to the function name)
        config: Breaker configuration

    Returns:
        Wrapped function; the breaker is reachable as ``wrapped.breaker``
    """
    breaker = CircuitBreaker(name or func.__name__, config)
    wrapped = breaker(func)
    wrapped.breaker = breaker  # type: ignore[attr-defined]
    return wrapped
