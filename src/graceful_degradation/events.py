"""
Service Status Event Channel

Observer channel through which collaborators (logging, UI, alerting) are told
about service-status transitions without the manager knowing about them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from types import TracebackType
from typing import Any

logger = logging.getLogger(__name__)


class ServiceStatus(Enum):
    """Caller-facing service status."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class StatusChangeEvent:
    """A service moved from one status to another."""

    service_name: str
    old_status: ServiceStatus
    new_status: ServiceStatus
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service_name,
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
            "timestamp": self.timestamp.isoformat(),
        }


StatusListener = Callable[[StatusChangeEvent], None]


class Subscription:
    """Handle returned by ``StatusEventChannel.subscribe``."""

    def __init__(self, channel: StatusEventChannel, listener: StatusListener) -> None:
        self._channel = channel
        self.listener = listener

    @property
    def active(self) -> bool:
        return self._channel.is_subscribed(self.listener)

    def cancel(self) -> None:
        self._channel.unsubscribe(self.listener)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.cancel()


class StatusEventChannel:
    """
    Typed publish/subscribe channel for status-change events.

    Listeners run synchronously in the publisher's thread, in subscription
    order. A failing listener is logged and does not affect the publisher or
    the remaining listeners.
    """

    def __init__(self) -> None:
        self._listeners: list[StatusListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: StatusListener) -> Subscription:
        """
        Register a listener.

        Args:
            listener: Callable receiving each StatusChangeEvent

        Returns:
            Subscription handle that can cancel the registration
        """
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)
        logger.debug(f"Added status listener {listener!r}")
        return Subscription(self, listener)

    def unsubscribe(self, listener: StatusListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
                logger.debug(f"Removed status listener {listener!r}")

    def is_subscribed(self, listener: StatusListener) -> bool:
        with self._lock:
            return listener in self._listeners

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, event: StatusChangeEvent) -> None:
        """Deliver ``event`` to every current listener."""
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    f"Status listener failed for '{event.service_name}': {e}",
                    exc_info=True,
                )


def logging_listener(target: logging.Logger | None = None) -> StatusListener:
    """
    Build a listener that logs every status transition.

    Recoveries are logged at INFO, degradations at WARNING.
    """
    log = target or logger

    def _log_event(event: StatusChangeEvent) -> None:
        level = logging.INFO if event.new_status == ServiceStatus.HEALTHY else logging.WARNING
        log.log(
            level,
            f"Service status changed: {event.service_name} "
            f"{event.old_status.value} -> {event.new_status.value}",
            extra=event.to_dict(),
        )

    return _log_event
