"""
Tests for ready-made degradation setups.
"""

import pytest

from graceful_degradation.errors import FallbackExhaustedError, OperationFailedError
from graceful_degradation.events import ServiceStatus
from graceful_degradation.presets import (
    DATABASE_SERVICE,
    SEARCH_SERVICE,
    CacheMissError,
    SearchUnavailableError,
    create_database_degradation,
    create_search_degradation,
)
from graceful_degradation.retry import RetryConfig

NO_WAIT = RetryConfig(max_retries=1, initial_delay=0, max_delay=0)


class FlakySearch:
    def __init__(self):
        self.available = True
        self.calls = 0

    async def __call__(self, query):
        self.calls += 1
        if not self.available:
            raise ConnectionError("no nodes connected")
        return [f"track:{query}"]


class TestSearchDegradation:
    """Test the search preset."""

    def test_chain_layout(self):
        manager = create_search_degradation(FlakySearch(), {})

        snapshot = manager.get_service_status(SEARCH_SERVICE)
        assert snapshot.has_fallback is True
        assert manager.get_config(SEARCH_SERVICE).failure_threshold == 5

    @pytest.mark.asyncio
    async def test_serves_cached_results(self):
        search = FlakySearch()
        search.available = False
        manager = create_search_degradation(search, {"lofi": ["cached:lofi"]})

        result = await manager.execute_with_result(SEARCH_SERVICE, search, "lofi")

        assert result.value == ["cached:lofi"]
        assert result.source == "cached-results"
        assert manager.get_service_status(SEARCH_SERVICE).status == ServiceStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_unavailable_when_nothing_cached(self):
        search = FlakySearch()
        search.available = False
        manager = create_search_degradation(search, {})

        with pytest.raises(OperationFailedError) as exc_info:
            await manager.execute(SEARCH_SERVICE, search, "jazz")

        exhausted = exc_info.value.fallback_error
        assert isinstance(exhausted, FallbackExhaustedError)
        assert [failure.name for failure in exhausted.failures] == [
            "primary-search",
            "cached-results",
            "error-response",
        ]
        assert isinstance(exhausted.errors[1], CacheMissError)
        assert isinstance(exhausted.errors[2], SearchUnavailableError)
        assert manager.is_available(SEARCH_SERVICE) is False


class TestDatabaseDegradation:
    """Test the database preset."""

    @pytest.mark.asyncio
    async def test_reads_populate_cache(self):
        async def query(key):
            return {"id": key}

        db = create_database_degradation(query, probe=lambda: None, retry_config=NO_WAIT)

        assert await db.read(1) == {"id": 1}
        assert db.cache == {1: {"id": 1}}
        assert db.manager.is_healthy(DATABASE_SERVICE)

    @pytest.mark.asyncio
    async def test_memory_cache_fallback(self):
        healthy = True

        def query(key):
            if not healthy:
                raise ConnectionError("database locked")
            return f"row-{key}"

        db = create_database_degradation(query, probe=lambda: None, retry_config=NO_WAIT)
        await db.read("a")

        healthy = False
        assert await db.read("a") == "row-a"
        assert db.manager.get_service_status(DATABASE_SERVICE).status == ServiceStatus.DEGRADED

        with pytest.raises(OperationFailedError) as exc_info:
            await db.read("b")
        assert isinstance(exc_info.value.fallback_error.errors[1], CacheMissError)

    @pytest.mark.asyncio
    async def test_retry_recovers_transient_failure(self):
        attempts = []

        async def query(key):
            attempts.append(key)
            if len(attempts) < 3:
                raise ConnectionError("busy")
            return "row"

        db = create_database_degradation(query, probe=lambda: None, retry_config=NO_WAIT)

        result = await db.manager.execute_with_result(DATABASE_SERVICE, db._query_and_store, "k")

        assert result.value == "row"
        assert result.source == "database-primary"
        assert db.cache["k"] == "row"

    @pytest.mark.asyncio
    async def test_probe_drives_health(self):
        def probe():
            raise ConnectionError("SELECT 1 failed")

        db = create_database_degradation(lambda key: key, probe=probe, retry_config=NO_WAIT)

        results = await db.manager.run_health_checks()

        assert results[DATABASE_SERVICE].healthy is False
        assert db.manager.is_available(DATABASE_SERVICE) is False
