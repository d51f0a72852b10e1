"""
Background Health Monitoring

Periodic sweep of the health probes registered on a DegradationManager.
The manager never schedules probes itself; running a HealthMonitor is the
caller's choice.
"""

import asyncio
import logging
from types import TracebackType
from typing import Any

from .degradation import DegradationManager, HealthCheckOutcome

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0
ERROR_RETRY_DELAY = 5.0


class HealthMonitor:
    """
    Runs ``manager.run_health_checks()`` on an interval in a background task.

    Example:
        >>> async with HealthMonitor(manager, interval=10):
        ...     await serve()
    """

    def __init__(self, manager: DegradationManager, interval: float | None = None) -> None:
        if interval is not None and interval <= 0:
            raise ValueError("interval must be positive")

        self.manager = manager
        self.interval = interval if interval is not None else self._default_interval()
        self.check_count = 0
        self.last_results: dict[str, HealthCheckOutcome] = {}

        self._monitoring_task: asyncio.Task[Any] | None = None
        self._stop_monitoring = False

    def _default_interval(self) -> float:
        """Smallest ``health_check_interval`` among services that have a probe."""
        intervals = [
            self.manager.get_config(name).health_check_interval
            for name in self.manager.service_names
            if self.manager.get_config(name).health_check is not None
        ]
        return min(intervals, default=DEFAULT_INTERVAL)

    @property
    def is_running(self) -> bool:
        return self._monitoring_task is not None and not self._monitoring_task.done()

    async def run_once(self) -> dict[str, HealthCheckOutcome]:
        """Run a single sweep and remember its results."""
        results = await self.manager.run_health_checks()
        self.check_count += 1
        self.last_results = results

        unhealthy = [name for name, outcome in results.items() if not outcome.healthy]
        if unhealthy:
            logger.warning(f"Health sweep found unhealthy services: {', '.join(unhealthy)}")
        else:
            logger.debug(f"Health sweep passed for {len(results)} service(s)")
        return results

    async def start(self) -> None:
        """Start background health monitoring."""
        if self.is_running:
            logger.warning("Health monitoring is already running")
            return

        self._stop_monitoring = False
        self._monitoring_task = asyncio.create_task(self._monitoring_loop())
        logger.info(f"Started background health monitoring every {self.interval}s")

    async def stop(self) -> None:
        """Stop background health monitoring."""
        self._stop_monitoring = True

        task = self._monitoring_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._monitoring_task = None

        logger.info("Stopped background health monitoring")

    async def _monitoring_loop(self) -> None:
        while not self._stop_monitoring:
            try:
                await self.run_once()
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in health monitoring loop: {e}", exc_info=True)
                await asyncio.sleep(min(ERROR_RETRY_DELAY, self.interval))

    async def __aenter__(self) -> "HealthMonitor":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()
