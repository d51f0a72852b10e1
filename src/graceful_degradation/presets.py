"""
Ready-made degradation setups for common dependencies.
"""

import logging
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass, field
from typing import Any

from .config import ServiceConfig
from .degradation import DegradationManager, FallbackSpec
from .errors import ResilienceError
from .fallback import run_callable
from .retry import RetryConfig, retry_with_backoff

logger = logging.getLogger(__name__)

SEARCH_SERVICE = "search"
DATABASE_SERVICE = "database"


class CacheMissError(ResilienceError):
    """The degraded cache had no entry for the key."""

    def __init__(self, key: Any) -> None:
        self.key = key
        super().__init__(f"No cached data for {key!r}")


class SearchUnavailableError(ResilienceError):
    """Final answer of the search chain when nothing else worked."""

    def __init__(self) -> None:
        super().__init__("Search temporarily unavailable")


def create_search_degradation(
    search: Callable[..., Any],
    cache: MutableMapping[Any, Any],
    health_check: Callable[[], Any] | None = None,
) -> DegradationManager:
    """
    Manager for a search backend with a cached-results fallback.

    The chain retries ``search`` first, then serves ``cache[query]``, and
    finally raises SearchUnavailableError.

    Example:
        >>> manager = create_search_degradation(client.search, search_cache)
        >>> results = await manager.execute("search", client.search, "query")
    """
    manager = DegradationManager()
    manager.register_service(
        SEARCH_SERVICE,
        ServiceConfig(
            timeout=10.0,
            health_check_interval=30.0,
            failure_threshold=5,
            success_threshold=2,
            health_check=health_check,
        ),
    )

    async def cached_results(query: Any) -> Any:
        if query in cache:
            logger.info("Using cached search results (degraded mode)")
            return cache[query]
        raise CacheMissError(query)

    async def error_response(*args: Any, **kwargs: Any) -> Any:
        logger.warning("All search strategies failed, returning error")
        raise SearchUnavailableError()

    manager.register_fallback(
        SEARCH_SERVICE,
        [
            FallbackSpec(search, priority=3, name="primary-search"),
            FallbackSpec(cached_results, priority=2, name="cached-results"),
            FallbackSpec(error_response, priority=1, name="error-response"),
        ],
    )
    return manager


@dataclass
class DatabaseDegradation:
    """
    A "database" service whose reads are cached in memory.

    ``read`` stores every successful answer so the memory-cache fallback
    can serve it while the database is failing.
    """

    manager: DegradationManager
    query: Callable[..., Any]
    cache: dict[Any, Any] = field(default_factory=dict)

    async def _query_and_store(self, key: Any) -> Any:
        value = await run_callable(self.query, key)
        self.cache[key] = value
        return value

    async def read(self, key: Any) -> Any:
        return await self.manager.execute(DATABASE_SERVICE, self._query_and_store, key)


def create_database_degradation(
    query: Callable[..., Any],
    probe: Callable[[], Any],
    retry_config: RetryConfig | None = None,
) -> DatabaseDegradation:
    """
    Manager for a database with a health probe and an in-memory read cache.

    The chain retries the query with backoff (``ServiceConfig.retries``
    attempts after the first) and then serves the memory cache.
    """
    config = ServiceConfig(
        timeout=5.0,
        health_check_interval=30.0,
        retries=2,
        failure_threshold=3,
        success_threshold=2,
        health_check=probe,
    )
    manager = DegradationManager()
    manager.register_service(DATABASE_SERVICE, config)

    degradation = DatabaseDegradation(manager=manager, query=query)
    retry_config = retry_config or RetryConfig.from_service_config(
        config, initial_delay=0.1, max_delay=1.0
    )

    async def database_primary(key: Any) -> Any:
        return await retry_with_backoff(degradation._query_and_store, key, config=retry_config)

    async def memory_cache(key: Any) -> Any:
        if key in degradation.cache:
            logger.info("Using memory cache (degraded mode)")
            return degradation.cache[key]
        raise CacheMissError(key)

    manager.register_fallback(
        DATABASE_SERVICE,
        [
            FallbackSpec(database_primary, priority=2, name="database-primary"),
            FallbackSpec(memory_cache, priority=1, name="memory-cache"),
        ],
    )
    return degradation
