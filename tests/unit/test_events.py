"""
Tests for the status event channel.
"""

import logging
from datetime import UTC, datetime

from graceful_degradation.events import (
    ServiceStatus,
    StatusChangeEvent,
    StatusEventChannel,
    logging_listener,
)


def _event(new_status=ServiceStatus.DEGRADED):
    return StatusChangeEvent(
        service_name="search",
        old_status=ServiceStatus.HEALTHY,
        new_status=new_status,
        timestamp=datetime(2024, 1, 1, tzinfo=UTC),
    )


class TestStatusChangeEvent:
    def test_to_dict(self):
        assert _event().to_dict() == {
            "service": "search",
            "old_status": "healthy",
            "new_status": "degraded",
            "timestamp": "2024-01-01T00:00:00+00:00",
        }


class TestStatusEventChannel:
    """Test subscription and delivery."""

    def test_publish_in_subscription_order(self):
        channel = StatusEventChannel()
        received = []
        channel.subscribe(lambda event: received.append(("first", event)))
        channel.subscribe(lambda event: received.append(("second", event)))

        event = _event()
        channel.publish(event)

        assert received == [("first", event), ("second", event)]

    def test_duplicate_subscription_is_ignored(self, recorder):
        channel = StatusEventChannel()
        channel.subscribe(recorder)
        channel.subscribe(recorder)

        channel.publish(_event())

        assert channel.listener_count == 1
        assert len(recorder.events) == 1

    def test_subscription_cancel(self, recorder):
        channel = StatusEventChannel()
        subscription = channel.subscribe(recorder)
        assert subscription.active is True

        subscription.cancel()
        channel.publish(_event())

        assert subscription.active is False
        assert recorder.events == []

    def test_subscription_context_manager(self, recorder):
        channel = StatusEventChannel()

        with channel.subscribe(recorder):
            channel.publish(_event())
        channel.publish(_event())

        assert len(recorder.events) == 1
        assert channel.listener_count == 0

    def test_unsubscribe_unknown_listener_is_noop(self, recorder):
        channel = StatusEventChannel()

        channel.unsubscribe(recorder)

        assert channel.is_subscribed(recorder) is False

    def test_failing_listener_is_isolated(self, recorder, caplog):
        channel = StatusEventChannel()

        def broken(event):
            raise RuntimeError("listener exploded")

        channel.subscribe(broken)
        channel.subscribe(recorder)

        with caplog.at_level(logging.ERROR, logger="graceful_degradation.events"):
            channel.publish(_event())

        assert len(recorder.events) == 1
        assert "listener exploded" in caplog.text


class TestLoggingListener:
    def test_levels_follow_status(self, caplog):
        log = logging.getLogger("tests.status")
        listener = logging_listener(log)

        with caplog.at_level(logging.INFO, logger="tests.status"):
            listener(_event(ServiceStatus.UNAVAILABLE))
            listener(_event(ServiceStatus.HEALTHY))

        levels = [record.levelno for record in caplog.records]
        assert levels == [logging.WARNING, logging.INFO]
        assert caplog.records[0].service == "search"
        assert "healthy -> unavailable" in caplog.records[0].getMessage()
