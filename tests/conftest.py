"""Global pytest configuration and fixtures."""

from pathlib import Path

import pytest
from dotenv import load_dotenv

from graceful_degradation.circuit_breaker import CircuitStateChange
from graceful_degradation.events import StatusChangeEvent

# Load test environment variables
test_env_path = Path(__file__).parent.parent / ".env.test"
if test_env_path.exists():
    load_dotenv(test_env_path, override=True)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    """Listener that remembers every event it receives."""

    def __init__(self) -> None:
        self.events: list = []

    def __call__(self, event) -> None:
        self.events.append(event)

    @property
    def transitions(self) -> list[tuple[str, str]]:
        result = []
        for event in self.events:
            if isinstance(event, StatusChangeEvent):
                result.append((event.old_status.value, event.new_status.value))
            elif isinstance(event, CircuitStateChange):
                result.append((event.old_state.value, event.new_state.value))
        return result


@pytest.fixture
def clock() -> FakeClock:
    """Provides a controllable clock."""
    return FakeClock()


@pytest.fixture
def recorder() -> EventRecorder:
    """Provides a recording listener."""
    return EventRecorder()
