"""
Resilience Configuration

Typed per-service configuration with explicit defaults, plus loading of
service settings from YAML/JSON files, ``.env`` files and environment
variables.
"""

import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .circuit_breaker import CircuitBreakerConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "GRACEFUL_DEGRADATION_"


class ConfigFormat(Enum):
    """Configuration file formats."""

    JSON = "json"
    YAML = "yaml"


@dataclass
class ConfigValidationError(ValueError):
    """Configuration validation error."""

    field_name: str
    expected_type: type[Any]
    actual_value: Any
    message: str = ""

    def __str__(self) -> str:
        return (
            f"Config validation failed for '{self.field_name}': "
            f"expected {self.expected_type.__name__}, got {self.actual_value!r}"
            + (f" - {self.message}" if self.message else "")
        )


# camelCase keys accepted for compatibility with existing service definitions
_KEY_ALIASES = {
    "healthCheckInterval": "health_check_interval",
    "failureThreshold": "failure_threshold",
    "successThreshold": "success_threshold",
    "resetTimeout": "reset_timeout",
    "circuitTimeout": "circuit_timeout",
    "halfOpenMaxCalls": "half_open_max_calls",
    "healthCheck": "health_check",
}


@dataclass(frozen=True)
class ServiceConfig:
    """
    Configuration consumed when a service is registered.

    Immutable once built; use ``dataclasses.replace`` to derive a variant.
    All durations are in seconds.

    Attributes:
        timeout: Per-call timeout for guarded operations
        health_check_interval: Suggested interval for the health sweep
        retries: Passed through for the caller's own retry wrapping
        failure_threshold: Consecutive failures before the circuit opens
        success_threshold: Consecutive probe successes before it closes
        reset_timeout: Time the circuit stays open before probing
        circuit_timeout: Call timeout used by the breaker's own ``call_async``
        half_open_max_calls: Concurrent probe limit, None for unlimited
        health_check: No-argument probe, sync or async; raising means unhealthy
    """

    timeout: float = 10.0
    health_check_interval: float = 30.0
    retries: int = 3
    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout: float = 30.0
    circuit_timeout: float = 60.0
    half_open_max_calls: int | None = None
    health_check: Callable[[], Any] | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Validate service configuration."""
        for name in ("failure_threshold", "success_threshold"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigValidationError(name, int, value, "must be an integer >= 1")

        if not isinstance(self.retries, int) or self.retries < 0:
            raise ConfigValidationError("retries", int, self.retries, "must be non-negative")

        for name in ("timeout", "health_check_interval", "circuit_timeout"):
            value = getattr(self, name)
            if not isinstance(value, int | float) or value <= 0:
                raise ConfigValidationError(name, float, value, "must be positive")

        if not isinstance(self.reset_timeout, int | float) or self.reset_timeout < 0:
            raise ConfigValidationError(
                "reset_timeout", float, self.reset_timeout, "must be non-negative"
            )

        if self.half_open_max_calls is not None and (
            not isinstance(self.half_open_max_calls, int) or self.half_open_max_calls < 1
        ):
            raise ConfigValidationError(
                "half_open_max_calls", int, self.half_open_max_calls, "must be >= 1 or None"
            )

        if self.health_check is not None and not callable(self.health_check):
            raise ConfigValidationError(
                "health_check", Callable, self.health_check, "must be callable"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "ServiceConfig":
        """
        Build a ServiceConfig from a mapping.

        Accepts snake_case and camelCase keys; unknown keys are rejected.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in (data or {}).items():
            name = _KEY_ALIASES.get(key, key)
            if name not in known:
                raise ConfigValidationError(key, str, key, "unknown service option")
            kwargs[name] = value
        return cls(**kwargs)

    def to_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            success_threshold=self.success_threshold,
            open_timeout=self.circuit_timeout,
            reset_timeout=self.reset_timeout,
            half_open_max_calls=self.half_open_max_calls,
        )

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "health_check"}


@dataclass
class ResilienceSettings:
    """Settings for a whole DegradationManager."""

    defaults: dict[str, Any] = field(default_factory=dict)
    services: dict[str, ServiceConfig] = field(default_factory=dict)
    log_level: str = "INFO"
    log_format: str = "text"

    def validate(self) -> None:
        if self.log_format not in ("json", "text"):
            raise ConfigValidationError(
                "log_format", str, self.log_format, "must be 'json' or 'text'"
            )
        if self.log_level.upper() not in logging.getLevelNamesMapping():
            raise ConfigValidationError("log_level", str, self.log_level, "unknown level")
        for service in self.services.values():
            service.validate()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResilienceSettings":
        """
        Build settings from a nested mapping.

        Expected shape::

            defaults: {timeout: 5}
            services:
              search: {failure_threshold: 3}
            logging: {level: INFO, format: json}
        """
        defaults = dict(data.get("defaults") or {})
        ServiceConfig.from_dict(defaults)  # fail early on bad defaults

        services = {}
        for name, overrides in (data.get("services") or {}).items():
            services[name] = ServiceConfig.from_dict({**defaults, **(overrides or {})})

        logging_data = data.get("logging") or {}
        settings = cls(
            defaults=defaults,
            services=services,
            log_level=str(logging_data.get("level", "INFO")),
            log_format=str(logging_data.get("format", "text")),
        )
        settings.validate()
        return settings

    def service_config(self, name: str) -> ServiceConfig:
        """Configuration for ``name``, falling back to the defaults."""
        if name in self.services:
            return self.services[name]
        return ServiceConfig.from_dict(self.defaults)

    def to_dict(self) -> dict[str, Any]:
        return {
            "defaults": dict(self.defaults),
            "services": {name: config.to_dict() for name, config in self.services.items()},
            "logging": {"level": self.log_level, "format": self.log_format},
        }

    def export(self, format: ConfigFormat = ConfigFormat.YAML) -> str:
        """Export settings to a string."""
        if format == ConfigFormat.JSON:
            return json.dumps(self.to_dict(), indent=2)
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)


class ConfigLoader(ABC):
    """Abstract base class for configuration loaders."""

    @abstractmethod
    def load(self, source: str) -> dict[str, Any]:
        """Load configuration from source."""
        pass


def _coerce(value: str) -> Any:
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.lower() in ("none", "null"):
        return None
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


class EnvironmentConfigLoader(ConfigLoader):
    """
    Load configuration from environment variables.

    Double underscores separate nesting levels, e.g.
    ``GRACEFUL_DEGRADATION_SERVICES__SEARCH__TIMEOUT=3`` or
    ``GRACEFUL_DEGRADATION_LOGGING__LEVEL=DEBUG``.
    """

    def __init__(self, prefix: str = ENV_PREFIX) -> None:
        self.prefix = prefix

    def load(self, source: str = "") -> dict[str, Any]:
        config: dict[str, Any] = {}

        for key, value in os.environ.items():
            if not key.startswith(self.prefix):
                continue
            path = [part.lower() for part in key[len(self.prefix) :].split("__") if part]
            if not path:
                continue
            node = config
            for part in path[:-1]:
                node = node.setdefault(part, {})
            node[path[-1]] = _coerce(value)

        return config


class FileConfigLoader(ConfigLoader):
    """Load configuration from YAML or JSON files."""

    def load(self, source: str) -> dict[str, Any]:
        path = Path(source)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {source}")

        content = path.read_text()

        if path.suffix.lower() == ".json":
            result = json.loads(content)
        elif path.suffix.lower() in (".yaml", ".yml"):
            result = yaml.safe_load(content)
        else:
            raise ValueError(f"Unsupported configuration file format: {path.suffix}")

        return result if isinstance(result, dict) else {}


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged


class SettingsLoader:
    """
    Load ResilienceSettings with precedence: file < environment.

    A ``.env`` file, when given, is loaded into the process environment
    first without overriding variables that are already set.
    """

    def __init__(self, prefix: str = ENV_PREFIX) -> None:
        self.loaders: dict[str, ConfigLoader] = {
            "env": EnvironmentConfigLoader(prefix),
            "file": FileConfigLoader(),
        }

    def load(
        self, config_file: str | None = None, env_file: str | None = None
    ) -> ResilienceSettings:
        if env_file:
            load_dotenv(env_file, override=False)
            logger.debug(f"Loaded environment file {env_file}")

        data: dict[str, Any] = {}
        if config_file:
            data = self.loaders["file"].load(config_file)
            logger.debug(f"Loaded configuration from {config_file}")

        env_data = self.loaders["env"].load("")
        if env_data:
            data = _deep_merge(data, _match_service_names(env_data, data))

        settings = ResilienceSettings.from_dict(data)
        logger.info(f"Loaded resilience settings for {len(settings.services)} service(s)")
        return settings


def _match_service_names(
    env_data: dict[str, Any], file_data: Mapping[str, Any]
) -> dict[str, Any]:
    """Map lower-cased service names from the environment onto declared names."""
    env_services = env_data.get("services")
    declared = file_data.get("services") or {}
    if not isinstance(env_services, dict) or not declared:
        return env_data

    by_lower = {name.lower(): name for name in declared}
    renamed = {by_lower.get(name, name): value for name, value in env_services.items()}
    return {**env_data, "services": renamed}


def load_settings(
    config_file: str | None = None, env_file: str | None = None
) -> ResilienceSettings:
    """Load settings from an optional file, ``.env`` file and the environment."""
    return SettingsLoader().load(config_file, env_file)
