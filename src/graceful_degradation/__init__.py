"""
Graceful Degradation

Keeps an application answering while its dependencies fail:
- Circuit breakers that stop calling a failing dependency
- Prioritized fallback chains and single-step fallback helpers
- Bulkheads capping concurrent calls per dependency
- A degradation manager classifying each dependency as healthy,
  degraded or unavailable and publishing status changes
- Retry with exponential backoff and background health monitoring
"""

from .bulkhead import Bulkhead, BulkheadStats
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStats,
    CircuitState,
    CircuitStateChange,
    with_circuit_breaker,
)
from .config import (
    ConfigValidationError,
    ResilienceSettings,
    ServiceConfig,
    SettingsLoader,
    load_settings,
)
from .degradation import (
    DegradationManager,
    ExecutionResult,
    FallbackSpec,
    HealthCheckOutcome,
    ServiceSnapshot,
    ServiceStats,
)
from .errors import (
    BulkheadFullError,
    CircuitOpenError,
    FallbackExhaustedError,
    NoStrategiesAvailableError,
    OperationFailedError,
    OperationTimeoutError,
    ResilienceError,
    RetryExhaustedError,
    ServiceNotRegisteredError,
    StrategyFailure,
)
from .events import ServiceStatus, StatusChangeEvent, StatusEventChannel, logging_listener
from .fallback import (
    FallbackChain,
    FallbackResult,
    FallbackStrategy,
    FunctionStrategy,
    StaleEntry,
    StaleResult,
    run_callable,
    stale_while_revalidate,
    with_fallback,
    with_timeout,
)
from .health import HealthMonitor
from .logging_config import ResilienceJSONFormatter, setup_logging
from .retry import ExponentialBackoff, RetryConfig, retry, retry_with_backoff

__version__ = "0.1.0"

__all__ = [
    "Bulkhead",
    "BulkheadStats",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerStats",
    "CircuitState",
    "CircuitStateChange",
    "with_circuit_breaker",
    "ConfigValidationError",
    "ResilienceSettings",
    "ServiceConfig",
    "SettingsLoader",
    "load_settings",
    "DegradationManager",
    "ExecutionResult",
    "FallbackSpec",
    "HealthCheckOutcome",
    "ServiceSnapshot",
    "ServiceStats",
    "BulkheadFullError",
    "CircuitOpenError",
    "FallbackExhaustedError",
    "NoStrategiesAvailableError",
    "OperationFailedError",
    "OperationTimeoutError",
    "ResilienceError",
    "RetryExhaustedError",
    "ServiceNotRegisteredError",
    "StrategyFailure",
    "ServiceStatus",
    "StatusChangeEvent",
    "StatusEventChannel",
    "logging_listener",
    "FallbackChain",
    "FallbackResult",
    "FallbackStrategy",
    "FunctionStrategy",
    "StaleEntry",
    "StaleResult",
    "run_callable",
    "stale_while_revalidate",
    "with_fallback",
    "with_timeout",
    "HealthMonitor",
    "ResilienceJSONFormatter",
    "setup_logging",
    "ExponentialBackoff",
    "RetryConfig",
    "retry",
    "retry_with_backoff",
]
