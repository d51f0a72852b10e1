"""
Resilience Error Taxonomy

Exceptions raised by circuit breakers, fallback chains and the degradation
manager. Every error carries enough context to be logged as structured data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class ResilienceError(Exception):
    """Base class for all errors raised by this package."""

    # Set on a dependency failure when its fallback chain failed as well
    fallback_error: ResilienceError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"type": type(self).__name__, "message": str(self)}


class ServiceNotRegisteredError(ResilienceError, KeyError):
    """An unknown dependency name was used."""

    def __init__(self, service_name: str) -> None:
        self.service_name = service_name
        super().__init__(f"Service not registered: {service_name}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return f"Service not registered: {self.service_name}"

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "service": self.service_name}


class CircuitOpenError(ResilienceError):
    """The breaker refused the call; the operation was never attempted."""

    def __init__(self, name: str, retry_after: float = 0.0) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is open. Next attempt in {retry_after:.0f}s"
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "service": self.name, "retry_after": self.retry_after}


class OperationTimeoutError(ResilienceError, TimeoutError):
    """The guarded operation did not complete within the configured timeout."""

    def __init__(self, name: str, timeout: float) -> None:
        self.name = name
        self.timeout = timeout
        super().__init__(f"Operation on '{name}' timed out after {timeout}s")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "service": self.name, "timeout": self.timeout}


class OperationFailedError(ResilienceError):
    """The guarded operation completed but raised its own failure."""

    def __init__(self, name: str, cause: BaseException) -> None:
        self.name = name
        self.cause = cause
        super().__init__(f"Operation on '{name}' failed: {type(cause).__name__}: {cause}")
        self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "service": self.name,
            "cause_type": type(self.cause).__name__,
            "cause": str(self.cause),
        }


@dataclass(frozen=True)
class StrategyFailure:
    """A single fallback strategy's failure."""

    index: int
    name: str
    error: BaseException

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "name": self.name,
            "error_type": type(self.error).__name__,
            "error": str(self.error),
        }


class FallbackExhaustedError(ResilienceError):
    """Every fallback strategy failed."""

    def __init__(self, name: str, failures: list[StrategyFailure]) -> None:
        self.name = name
        self.failures = list(failures)
        details = ", ".join(
            f"[{failure.index}] {failure.name}: {failure.error}" for failure in self.failures
        )
        super().__init__(f"All fallback strategies failed for '{name}': {details}")

    @property
    def errors(self) -> list[BaseException]:
        return [failure.error for failure in self.failures]

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "chain": self.name,
            "failures": [failure.to_dict() for failure in self.failures],
        }


class BulkheadFullError(ResilienceError):
    """A bulkhead had every slot busy and its wait queue full."""

    def __init__(self, name: str, max_queue: int) -> None:
        self.name = name
        self.max_queue = max_queue
        super().__init__(f"Bulkhead '{name}' queue full ({max_queue} waiting)")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "bulkhead": self.name, "max_queue": self.max_queue}


class NoStrategiesAvailableError(ResilienceError):
    """A fallback chain was executed with no strategies registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name}: No strategies available")

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "chain": self.name}


class RetryExhaustedError(ResilienceError):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self, attempts: int, last_exception: BaseException | None, total_time: float
    ) -> None:
        self.attempts = attempts
        self.last_exception = last_exception
        self.total_time = total_time
        error_msg = f"Last error: {last_exception}" if last_exception else "No exception recorded"
        super().__init__(
            f"Retry exhausted after {attempts} attempts in {total_time:.2f}s. {error_msg}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "attempts": self.attempts,
            "total_time": self.total_time,
        }
