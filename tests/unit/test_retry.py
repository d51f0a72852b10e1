"""
Tests for retry logic with exponential backoff.
"""

from unittest.mock import AsyncMock, patch

import pytest

from graceful_degradation.config import ServiceConfig
from graceful_degradation.errors import CircuitOpenError, RetryExhaustedError
from graceful_degradation.retry import (
    ExponentialBackoff,
    RetryConfig,
    is_retryable_exception,
    retry,
    retry_with_backoff,
)

FAST = RetryConfig(max_retries=3, initial_delay=0, max_delay=0)


class TestRetryConfig:
    """Test retry configuration."""

    def test_default_config(self):
        config = RetryConfig()

        assert config.max_retries == 3
        assert config.initial_delay == 1.0
        assert config.max_delay == 8.0
        assert config.backoff_multiplier == 2.0
        assert config.jitter is False

    def test_config_validation(self):
        with pytest.raises(ValueError, match="max_retries must be non-negative"):
            RetryConfig(max_retries=-1)

        with pytest.raises(ValueError, match="max_delay must be >= initial_delay"):
            RetryConfig(initial_delay=5, max_delay=1)

        with pytest.raises(ValueError, match="backoff_multiplier must be >= 1.0"):
            RetryConfig(backoff_multiplier=0.5)

        with pytest.raises(ValueError, match="jitter_range must be between 0 and 1"):
            RetryConfig(jitter_range=2)

    def test_from_service_config(self):
        config = RetryConfig.from_service_config(ServiceConfig(retries=5), initial_delay=0.5)

        assert config.max_retries == 5
        assert config.initial_delay == 0.5


class TestExponentialBackoff:
    """Test delay calculation."""

    def test_delays_double_until_capped(self):
        backoff = ExponentialBackoff(RetryConfig())

        assert backoff.get_delays(5) == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_negative_attempt(self):
        assert ExponentialBackoff(RetryConfig()).get_delay(-1) == 0.0

    def test_jitter_stays_in_range(self):
        backoff = ExponentialBackoff(RetryConfig(jitter=True, jitter_range=0.1))

        for _ in range(50):
            assert 1.8 <= backoff.get_delay(1) <= 2.2


class TestRetryableExceptions:
    def test_classification(self):
        config = RetryConfig()

        assert is_retryable_exception(ConnectionError(), config) is True
        assert is_retryable_exception(TimeoutError(), config) is True
        assert is_retryable_exception(ValueError(), config) is False
        assert is_retryable_exception(CircuitOpenError("svc"), config) is False
        assert is_retryable_exception(RuntimeError(), config) is False

    def test_predicate_overrides_tuples(self):
        config = RetryConfig(should_retry=lambda e: "5" in str(e))

        assert is_retryable_exception(RuntimeError("HTTP 503"), config) is True
        assert is_retryable_exception(ConnectionError("HTTP 404"), config) is False


class TestRetryWithBackoff:
    """Test retry execution."""

    @pytest.mark.asyncio
    async def test_succeeds_after_transient_failures(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await retry_with_backoff(flaky, config=FAST) == "ok"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_sync_functions_supported(self):
        assert await retry_with_backoff(lambda a, b=0: a + b, 1, b=2, config=FAST) == 3

    @pytest.mark.asyncio
    async def test_exhaustion(self):
        async def always_fails():
            raise TimeoutError("slow")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry_with_backoff(always_fails, config=FAST)

        error = exc_info.value
        assert error.attempts == 4
        assert isinstance(error.last_exception, TimeoutError)
        assert error.__cause__ is error.last_exception

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self):
        attempts = []

        def invalid():
            attempts.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            await retry_with_backoff(invalid, config=FAST)
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_sleeps_follow_backoff(self):
        async def always_fails():
            raise ConnectionError("down")

        config = RetryConfig(max_retries=3, initial_delay=1, max_delay=3)
        with patch("graceful_degradation.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(RetryExhaustedError):
                await retry_with_backoff(always_fails, config=config)

        assert [call.args[0] for call in sleep.call_args_list] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_decorator(self):
        calls = []

        @retry(FAST)
        def fetch(key):
            calls.append(key)
            if len(calls) == 1:
                raise OSError("blip")
            return key

        assert await fetch("k") == "k"
        assert fetch.__name__ == "fetch"
        assert calls == ["k", "k"]
