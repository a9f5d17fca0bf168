"""
Pytest configuration and fixtures for relay-store.

Provides controllable clocks, a scripted sender and buffer factories.
"""

from datetime import datetime, timedelta, timezone

import pytest

from relay_store.buffer import CircuitBreaker, PersistentBuffer, SendResult


class FakeClock:
    """Wall clock returning aware UTC datetimes; advanced by hand."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeMonotonic:
    """Monotonic seconds counter for the circuit breaker."""

    def __init__(self, start: float = 1000.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class ScriptedSender:
    """Sender returning queued results (last one repeats) and recording bodies."""

    def __init__(self, *results: SendResult):
        self._results = list(results) or [SendResult(status_code=200)]
        self.bodies: list[bytes] = []

    def __call__(self, body: bytes) -> SendResult:
        self.bodies.append(body)
        if len(self._results) > 1:
            return self._results.pop(0)
        return self._results[0]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mono():
    return FakeMonotonic()


@pytest.fixture
def buffer_file(tmp_path):
    return tmp_path / "state" / "buffer.json"


@pytest.fixture
def make_buffer(buffer_file, clock, mono):
    """Factory for buffers sharing the test's file and clocks."""

    def _make(capacity: int = 100, **kwargs) -> PersistentBuffer:
        kwargs.setdefault("persist_file", buffer_file)
        kwargs.setdefault("clock", clock)
        kwargs.setdefault(
            "circuit_breaker", CircuitBreaker(failure_threshold=3, open_duration=30.0, clock=mono)
        )
        return PersistentBuffer(capacity, **kwargs)

    return _make


@pytest.fixture
def scripted():
    """Factory for ScriptedSender instances."""
    return ScriptedSender
