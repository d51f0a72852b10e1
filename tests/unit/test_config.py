"""
Tests for resilience configuration loading.
"""

import dataclasses
import json
import os

import pytest
import yaml

from graceful_degradation.config import (
    ConfigFormat,
    ConfigValidationError,
    EnvironmentConfigLoader,
    FileConfigLoader,
    ResilienceSettings,
    ServiceConfig,
    SettingsLoader,
    load_settings,
)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove any package variables inherited from the environment."""
    for key in list(os.environ):
        if key.startswith("GRACEFUL_DEGRADATION_"):
            monkeypatch.delenv(key)
    return monkeypatch


class TestServiceConfig:
    """Test per-service configuration."""

    def test_defaults(self):
        config = ServiceConfig()

        assert config.timeout == 10.0
        assert config.health_check_interval == 30.0
        assert config.retries == 3
        assert config.failure_threshold == 5
        assert config.success_threshold == 2
        assert config.reset_timeout == 30.0
        assert config.circuit_timeout == 60.0
        assert config.health_check is None

    @pytest.mark.parametrize(
        "kwargs, field_name",
        [
            ({"failure_threshold": 0}, "failure_threshold"),
            ({"success_threshold": True}, "success_threshold"),
            ({"retries": -1}, "retries"),
            ({"timeout": 0}, "timeout"),
            ({"reset_timeout": -5}, "reset_timeout"),
            ({"half_open_max_calls": 0}, "half_open_max_calls"),
            ({"health_check": "not callable"}, "health_check"),
        ],
    )
    def test_validation(self, kwargs, field_name):
        with pytest.raises(ConfigValidationError) as exc_info:
            ServiceConfig(**kwargs)

        assert exc_info.value.field_name == field_name
        assert isinstance(exc_info.value, ValueError)

    def test_is_immutable(self):
        config = ServiceConfig(timeout=5)

        with pytest.raises(dataclasses.FrozenInstanceError):
            config.timeout = 60

        assert dataclasses.replace(config, timeout=60).timeout == 60
        assert config.timeout == 5

    def test_from_dict_accepts_camel_case(self):
        config = ServiceConfig.from_dict(
            {"healthCheckInterval": 10, "circuitTimeout": 20, "timeout": 5}
        )

        assert config.health_check_interval == 10
        assert config.circuit_timeout == 20
        assert config.timeout == 5

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigValidationError, match="unknown service option"):
            ServiceConfig.from_dict({"colour": "blue"})

    def test_to_breaker_config(self):
        breaker = ServiceConfig(
            failure_threshold=3, reset_timeout=15, circuit_timeout=45, half_open_max_calls=1
        ).to_breaker_config()

        assert breaker.failure_threshold == 3
        assert breaker.reset_timeout == 15
        assert breaker.open_timeout == 45
        assert breaker.half_open_max_calls == 1

    def test_to_dict_omits_health_check(self):
        data = ServiceConfig(health_check=lambda: None).to_dict()

        assert "health_check" not in data
        assert data["timeout"] == 10.0


class TestResilienceSettings:
    """Test manager-wide settings."""

    def test_defaults_apply_to_services(self):
        settings = ResilienceSettings.from_dict(
            {"defaults": {"timeout": 3}, "services": {"search": {"retries": 1}}}
        )

        assert settings.services["search"].timeout == 3
        assert settings.services["search"].retries == 1
        assert settings.service_config("unknown").timeout == 3

    def test_logging_settings(self):
        settings = ResilienceSettings.from_dict({"logging": {"level": "debug", "format": "json"}})

        assert settings.log_level == "debug"
        assert settings.log_format == "json"

    def test_invalid_logging_settings(self):
        with pytest.raises(ConfigValidationError):
            ResilienceSettings.from_dict({"logging": {"format": "xml"}})

        with pytest.raises(ConfigValidationError):
            ResilienceSettings.from_dict({"logging": {"level": "LOUD"}})

    def test_invalid_defaults_fail_early(self):
        with pytest.raises(ConfigValidationError):
            ResilienceSettings.from_dict({"defaults": {"timeout": -1}})

    def test_export_round_trips_through_yaml(self):
        settings = ResilienceSettings.from_dict({"services": {"search": {"timeout": 4}}})

        exported = yaml.safe_load(settings.export(ConfigFormat.YAML))

        assert exported["services"]["search"]["timeout"] == 4
        assert json.loads(settings.export(ConfigFormat.JSON)) == exported


class TestLoaders:
    """Test file and environment loaders."""

    def test_file_loader_yaml(self, tmp_path):
        path = tmp_path / "resilience.yaml"
        path.write_text("services:\n  search:\n    timeout: 7\n")

        assert FileConfigLoader().load(str(path)) == {"services": {"search": {"timeout": 7}}}

    def test_file_loader_json(self, tmp_path):
        path = tmp_path / "resilience.json"
        path.write_text(json.dumps({"defaults": {"retries": 0}}))

        assert FileConfigLoader().load(str(path)) == {"defaults": {"retries": 0}}

    def test_file_loader_errors(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FileConfigLoader().load(str(tmp_path / "missing.yaml"))

        path = tmp_path / "resilience.ini"
        path.write_text("[x]")
        with pytest.raises(ValueError, match="Unsupported"):
            FileConfigLoader().load(str(path))

    def test_environment_loader_nesting_and_coercion(self, clean_env):
        clean_env.setenv("GRACEFUL_DEGRADATION_SERVICES__SEARCH__TIMEOUT", "2.5")
        clean_env.setenv("GRACEFUL_DEGRADATION_SERVICES__SEARCH__RETRIES", "4")
        clean_env.setenv("GRACEFUL_DEGRADATION_LOGGING__LEVEL", "DEBUG")

        data = EnvironmentConfigLoader().load()

        assert data == {
            "services": {"search": {"timeout": 2.5, "retries": 4}},
            "logging": {"level": "DEBUG"},
        }


class TestSettingsLoader:
    """Test layered settings loading."""

    def test_environment_overrides_file(self, tmp_path, clean_env):
        path = tmp_path / "resilience.yml"
        path.write_text("services:\n  Search:\n    timeout: 7\n    retries: 1\n")
        clean_env.setenv("GRACEFUL_DEGRADATION_SERVICES__SEARCH__TIMEOUT", "3")

        settings = SettingsLoader().load(config_file=str(path))

        assert settings.services["Search"].timeout == 3
        assert settings.services["Search"].retries == 1

    def test_env_file_does_not_override_process_env(self, tmp_path, clean_env):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "GRACEFUL_DEGRADATION_DEFAULTS__TIMEOUT=9\n"
            "GRACEFUL_DEGRADATION_LOGGING__FORMAT=json\n"
        )
        clean_env.setenv("GRACEFUL_DEGRADATION_DEFAULTS__TIMEOUT", "4")
        # load_dotenv writes straight into os.environ; make teardown remove it
        clean_env.setenv("GRACEFUL_DEGRADATION_LOGGING__FORMAT", "text")
        clean_env.delenv("GRACEFUL_DEGRADATION_LOGGING__FORMAT")

        settings = load_settings(env_file=str(env_file))

        assert settings.defaults["timeout"] == 4
        assert settings.log_format == "json"

    def test_no_sources_gives_defaults(self, clean_env):
        settings = SettingsLoader().load()

        assert settings.services == {}
        assert settings.service_config("anything") == ServiceConfig()
