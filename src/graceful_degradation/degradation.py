"""
Service Degradation Manager

Single entry point for calling unreliable dependencies. Each registered
service owns a circuit breaker and an optional fallback chain; the manager
runs guarded operations under a timeout, absorbs failures through the chain,
classifies every service as HEALTHY, DEGRADED or UNAVAILABLE and publishes
status transitions on a StatusEventChannel.
"""

import asyncio
import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from .circuit_breaker import CircuitBreaker, CircuitBreakerStats, CircuitState, CircuitStateChange
from .config import ResilienceSettings, ServiceConfig
from .errors import (
    CircuitOpenError,
    FallbackExhaustedError,
    NoStrategiesAvailableError,
    OperationFailedError,
    OperationTimeoutError,
    ServiceNotRegisteredError,
)
from .events import ServiceStatus, StatusChangeEvent, StatusEventChannel
from .fallback import FallbackChain, FallbackStrategy, run_callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Breaker transitions reflected onto the caller-facing status
_CIRCUIT_STATUS = {
    CircuitState.OPEN: ServiceStatus.UNAVAILABLE,
    CircuitState.HALF_OPEN: ServiceStatus.DEGRADED,
    CircuitState.CLOSED: ServiceStatus.HEALTHY,
}


@dataclass
class ServiceStats:
    """Call statistics for one service."""

    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    last_error: str | None = None
    last_checked: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "successful_calls": self.successful_calls,
            "failed_calls": self.failed_calls,
            "last_error": self.last_error,
            "last_checked": self.last_checked.isoformat() if self.last_checked else None,
        }


@dataclass(frozen=True)
class ServiceSnapshot:
    """Read-only view of a service record and its breaker."""

    name: str
    status: ServiceStatus
    stats: ServiceStats
    circuit_breaker: CircuitBreakerStats
    has_fallback: bool

    @property
    def last_checked(self) -> datetime | None:
        return self.stats.last_checked

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "stats": self.stats.to_dict(),
            "circuit_breaker": self.circuit_breaker.to_dict(),
            "has_fallback": self.has_fallback,
        }


@dataclass(frozen=True)
class HealthCheckOutcome:
    healthy: bool
    error: str | None = None


@dataclass(frozen=True)
class FallbackSpec:
    """Declarative fallback strategy for ``register_fallback``."""

    fn: FallbackStrategy | Callable[..., Any]
    priority: int | None = None
    name: str | None = None


StrategyDeclaration = FallbackSpec | Mapping[str, Any] | FallbackStrategy | Callable[..., Any]


class ExecutionResult(Generic[T]):
    """
    Outcome of a successful ``execute_with_result`` call.

    ``used_fallback`` tells a degraded answer apart from a healthy one;
    ``error`` is the dependency failure that the fallback absorbed.
    """

    def __init__(
        self,
        value: T,
        status: ServiceStatus,
        used_fallback: bool = False,
        source: str = "primary",
        error: BaseException | None = None,
    ) -> None:
        self.value = value
        self.status = status
        self.used_fallback = used_fallback
        self.source = source
        self.error = error

    @property
    def degraded(self) -> bool:
        return self.used_fallback

    def __repr__(self) -> str:
        return (
            f"ExecutionResult(status={self.status.value}, source='{self.source}', "
            f"fallback={self.used_fallback})"
        )


@dataclass
class ServiceRecord:
    """Per-service state owned exclusively by a DegradationManager."""

    name: str
    config: ServiceConfig
    breaker: CircuitBreaker
    status: ServiceStatus = ServiceStatus.HEALTHY
    stats: ServiceStats = field(default_factory=ServiceStats)
    chain: FallbackChain | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)


class DegradationManager:
    """
    Orchestrates circuit breakers and fallback chains per dependency.

    Every service has its own lock; calls against different services never
    contend with each other. The manager is a plain object: construct one and
    hand it to the collaborators that need it.

    Example:
        >>> manager = DegradationManager()
        >>> manager.register_service("search", ServiceConfig(timeout=5))
        >>> manager.register_fallback("search", [FallbackSpec(cache.get)])
        >>> result = await manager.execute("search", client.search, "query")
    """

    def __init__(
        self,
        events: StatusEventChannel | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.events = events or StatusEventChannel()
        self._clock = clock
        self._services: dict[str, ServiceRecord] = {}
        self._registry_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: ResilienceSettings,
        health_checks: Mapping[str, Callable[[], Any]] | None = None,
        events: StatusEventChannel | None = None,
    ) -> "DegradationManager":
        """Create a manager with every service declared in ``settings`` registered."""
        manager = cls(events=events)
        checks = health_checks or {}
        for name, config in settings.services.items():
            if name in checks:
                config = replace(config, health_check=checks[name])
            manager.register_service(name, config)
        return manager

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_service(
        self, name: str, config: ServiceConfig | Mapping[str, Any] | None = None
    ) -> None:
        """
        Register a dependency with a fresh circuit breaker.

        Args:
            name: Unique service name
            config: ServiceConfig or mapping of its fields (defaults apply)

        Raises:
            ValueError: If the name is already registered
        """
        if config is None:
            config = ServiceConfig()
        elif not isinstance(config, ServiceConfig):
            config = ServiceConfig.from_dict(config)

        breaker = CircuitBreaker(
            name,
            config.to_breaker_config(),
            on_state_change=self._on_circuit_change,
            clock=self._clock,
        )
        record = ServiceRecord(name=name, config=config, breaker=breaker)

        with self._registry_lock:
            if name in self._services:
                raise ValueError(f"Service already registered: {name}")
            self._services[name] = record

        logger.info(f"Registered service: {name}")

    def register_fallback(
        self,
        name: str,
        strategies: Iterable[StrategyDeclaration],
    ) -> FallbackChain:
        """
        Attach a fallback chain to a registered service.

        Strategies without an explicit priority get ``len(strategies) - index``
        so earlier declarations win. Each strategy attempt is bounded by the
        service's ``timeout``.

        Raises:
            ServiceNotRegisteredError: If the service is unknown
        """
        record = self._get_record(name)
        specs = [self._to_spec(item) for item in strategies]

        chain = FallbackChain(name, timeout=record.config.timeout)
        for index, spec in enumerate(specs):
            priority = spec.priority if spec.priority is not None else len(specs) - index
            chain.add_strategy(spec.fn, priority, spec.name)

        with record.lock:
            record.chain = chain

        logger.info(f"Registered fallback chain for: {name} ({len(specs)} strategies)")
        return chain

    @staticmethod
    def _to_spec(item: Any) -> FallbackSpec:
        if isinstance(item, FallbackSpec):
            return item
        if isinstance(item, Mapping):
            if "fn" not in item:
                raise ValueError(f"Fallback strategy mapping requires 'fn': {dict(item)!r}")
            return FallbackSpec(fn=item["fn"], priority=item.get("priority"), name=item.get("name"))
        return FallbackSpec(fn=item)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self, name: str, operation: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> Any:
        """
        Run ``operation`` against service ``name`` with degradation handling.

        The fallback chain, when registered, receives the same arguments.

        Raises:
            ServiceNotRegisteredError: If the service is unknown
            CircuitOpenError: Circuit refused the call and nothing absorbed it
            OperationTimeoutError: Operation timed out and nothing absorbed it
            OperationFailedError: Operation raised and nothing absorbed it
        """
        result = await self.execute_with_result(name, operation, *args, **kwargs)
        return result.value

    async def execute_with_result(
        self, name: str, operation: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> ExecutionResult[Any]:
        """Like ``execute`` but reports whether the answer came from a fallback."""
        record = self._get_record(name)

        with record.lock:
            record.stats.total_calls += 1

        failure: CircuitOpenError | OperationTimeoutError | OperationFailedError
        ticket = record.breaker.acquire()
        if ticket is None:
            failure = CircuitOpenError(name, record.breaker.time_until_retry())
            logger.debug(f"{name}: circuit open, skipping operation")
            # The breaker already counted the rejection; it is not an outcome
            self._count_failure(record, str(failure))
        else:
            try:
                value = await self._run_guarded(record, operation, *args, **kwargs)
            except asyncio.CancelledError as e:
                # The breaker must still see a verdict for this call
                self._record_failure(record, e, "cancelled")
                raise
            except OperationTimeoutError as e:
                failure = e
            except Exception as e:
                failure = OperationFailedError(name, e)
            else:
                record.breaker.record_success(ticket)
                with record.lock:
                    record.stats.successful_calls += 1
                self._set_status(record, ServiceStatus.HEALTHY)
                return ExecutionResult(value, ServiceStatus.HEALTHY)

            self._record_failure(record, failure, str(failure))

        chain = record.chain
        if chain is None:
            self._set_status(record, ServiceStatus.UNAVAILABLE)
            raise failure

        logger.warning(f"{name} failed, trying fallback: {failure}")
        try:
            fallback = await chain.execute_with_result(*args, **kwargs)
        except (FallbackExhaustedError, NoStrategiesAvailableError) as fallback_error:
            self._set_status(record, ServiceStatus.UNAVAILABLE)
            logger.error(f"{name}: all available paths exhausted: {fallback_error}")
            failure.fallback_error = fallback_error
            raise failure

        self._set_status(record, ServiceStatus.DEGRADED)
        return ExecutionResult(
            fallback.value,
            ServiceStatus.DEGRADED,
            used_fallback=True,
            source=fallback.source,
            error=failure,
        )

    async def _run_guarded(
        self, record: ServiceRecord, operation: Callable[..., Any], *args: Any, **kwargs: Any
    ) -> Any:
        timeout = record.config.timeout
        try:
            return await asyncio.wait_for(run_callable(operation, *args, **kwargs), timeout=timeout)
        except TimeoutError as e:
            raise OperationTimeoutError(record.name, timeout) from e

    def _record_failure(self, record: ServiceRecord, error: BaseException, message: str) -> None:
        record.breaker.record_failure(error)
        self._count_failure(record, message)

    @staticmethod
    def _count_failure(record: ServiceRecord, message: str) -> None:
        with record.lock:
            record.stats.failed_calls += 1
            record.stats.last_error = message

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _set_status(self, record: ServiceRecord, new_status: ServiceStatus) -> None:
        with record.lock:
            old_status = record.status
            if old_status == new_status:
                return
            now = datetime.now(UTC)
            record.status = new_status
            record.stats.last_checked = now

        logger.info(
            f"Service status changed: {record.name} {old_status.value} -> {new_status.value}"
        )
        self.events.publish(
            StatusChangeEvent(
                service_name=record.name,
                old_status=old_status,
                new_status=new_status,
                timestamp=now,
            )
        )

    def _on_circuit_change(self, change: CircuitStateChange) -> None:
        logger.info(
            f"Circuit breaker state changed: {change.name} "
            f"{change.old_state.value} -> {change.new_state.value}"
        )
        record = self._services.get(change.name)
        if record is not None:
            self._set_status(record, _CIRCUIT_STATUS[change.new_state])

    def _get_record(self, name: str) -> ServiceRecord:
        record = self._services.get(name)
        if record is None:
            raise ServiceNotRegisteredError(name)
        return record

    def get_service_status(self, name: str) -> ServiceSnapshot | None:
        """Snapshot of one service, or None if it is not registered."""
        record = self._services.get(name)
        if record is None:
            return None

        with record.lock:
            return ServiceSnapshot(
                name=record.name,
                status=record.status,
                stats=replace(record.stats),
                circuit_breaker=record.breaker.get_stats(),
                has_fallback=record.chain is not None,
            )

    def get_all_status(self) -> dict[str, ServiceSnapshot]:
        with self._registry_lock:
            names = list(self._services)
        snapshots = {name: self.get_service_status(name) for name in names}
        return {name: snapshot for name, snapshot in snapshots.items() if snapshot is not None}

    def is_available(self, name: str) -> bool:
        record = self._services.get(name)
        return record is not None and record.status != ServiceStatus.UNAVAILABLE

    def is_healthy(self, name: str) -> bool:
        record = self._services.get(name)
        return record is not None and record.status == ServiceStatus.HEALTHY

    @property
    def service_names(self) -> list[str]:
        with self._registry_lock:
            return list(self._services)

    def get_config(self, name: str) -> ServiceConfig:
        return self._get_record(name).config

    def reset_service(self, name: str) -> None:
        """
        Return a service to its initial state.

        Zeroes statistics, closes the breaker and resets the fallback chain.

        Raises:
            ServiceNotRegisteredError: If the service is unknown
        """
        record = self._get_record(name)

        with record.lock:
            record.stats = ServiceStats()
            record.breaker.reset()
            if record.chain is not None:
                record.chain.reset()

        self._set_status(record, ServiceStatus.HEALTHY)
        logger.info(f"Service reset: {name}")

    # ------------------------------------------------------------------
    # Health checks
    # ------------------------------------------------------------------

    async def run_health_checks(self) -> dict[str, HealthCheckOutcome]:
        """
        Probe every service that has a health check configured.

        A passing probe marks the service HEALTHY, a failing or timed-out
        probe marks it UNAVAILABLE. Probes run one after another.

        Returns:
            Mapping of service name to outcome for every probed service
        """
        results: dict[str, HealthCheckOutcome] = {}

        for name in self.service_names:
            record = self._services[name]
            probe = record.config.health_check
            if probe is None:
                continue

            try:
                await asyncio.wait_for(run_callable(probe), timeout=record.config.timeout)
            except TimeoutError:
                error = f"Health check timed out after {record.config.timeout}s"
                results[name] = HealthCheckOutcome(healthy=False, error=error)
                self._set_status(record, ServiceStatus.UNAVAILABLE)
            except Exception as e:
                results[name] = HealthCheckOutcome(healthy=False, error=str(e))
                self._set_status(record, ServiceStatus.UNAVAILABLE)
            else:
                results[name] = HealthCheckOutcome(healthy=True)
                self._set_status(record, ServiceStatus.HEALTHY)

            with record.lock:
                record.stats.last_checked = datetime.now(UTC)
                if not results[name].healthy:
                    record.stats.last_error = results[name].error

            if not results[name].healthy:
                logger.warning(f"Health check failed for {name}: {results[name].error}")

        return results
