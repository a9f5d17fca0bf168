"""
Unit tests for circuit breaker.
"""

import threading

import pytest

from relay_store.buffer import CircuitBreaker, CircuitState


def test_circuit_breaker_states(mono):
    """Test circuit breaker state transitions."""
    cb = CircuitBreaker(failure_threshold=3, open_duration=10.0, clock=mono)

    # Initial state: closed
    assert cb.state == "closed"
    assert cb.can_attempt()

    cb.record_failure()
    cb.record_failure()
    assert cb.state == "closed"  # Still below threshold
    assert cb.can_attempt()

    cb.record_failure()  # Third failure
    assert cb.state == "open"
    assert not cb.can_attempt()

    # Success closes it
    cb.record_success()
    assert cb.state == "closed"
    assert cb.can_attempt()
    assert cb.consecutive_failures == 0


def test_open_then_half_open_admits_one_trial(mono):
    cb = CircuitBreaker(failure_threshold=2, open_duration=5.0, clock=mono)
    cb.record_failure()
    cb.record_failure()
    assert not cb.can_attempt()

    mono.advance(4.9)
    assert not cb.can_attempt()
    assert cb.state == CircuitState.OPEN.value

    mono.advance(0.1)
    assert cb.can_attempt()  # transitions lazily
    assert cb.state == "half_open"
    assert not cb.can_attempt()  # trial already admitted

    cb.record_success()
    assert cb.state == "closed"
    assert cb.can_attempt()


def test_half_open_failure_reopens_and_restarts_timer(mono):
    cb = CircuitBreaker(failure_threshold=3, open_duration=5.0, clock=mono)
    for _ in range(3):
        cb.record_failure()
    mono.advance(5)
    assert cb.can_attempt()

    mono.advance(1)
    cb.record_failure()
    assert cb.state == "open"
    assert cb.last_failure_at == mono.t

    mono.advance(4)
    assert not cb.can_attempt()
    mono.advance(1)
    assert cb.can_attempt()


def test_abandoned_trial_expires(mono):
    cb = CircuitBreaker(failure_threshold=1, open_duration=5.0, clock=mono)
    cb.record_failure()
    mono.advance(5)
    assert cb.can_attempt()
    mono.advance(2)
    assert not cb.can_attempt()
    mono.advance(3)
    assert cb.can_attempt()  # lease expired, new trial
    assert cb.state == "half_open"


def test_success_resets_failure_count(mono):
    cb = CircuitBreaker(failure_threshold=3, open_duration=5.0, clock=mono)
    cb.record_failure()
    cb.record_failure()
    cb.record_success()
    cb.record_failure()
    cb.record_failure()
    assert cb.state == "closed"


def test_concurrent_failures_counted_exactly():
    cb = CircuitBreaker(failure_threshold=1000, open_duration=1.0)

    def hammer():
        for _ in range(100):
            cb.record_failure()

    threads = [threading.Thread(target=hammer) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert cb.consecutive_failures == 800


@pytest.mark.parametrize("kwargs", [{"failure_threshold": 0}, {"open_duration": -1}])
def test_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        CircuitBreaker(**kwargs)


def test_release_trial_readmits_half_open(mono):
    cb = CircuitBreaker(failure_threshold=1, open_duration=10.0, clock=mono)
    cb.record_failure()
    mono.advance(10)

    assert cb.can_attempt()
    assert not cb.can_attempt()  # trial in progress

    cb.release_trial()
    assert cb.state == "half_open"
    assert cb.can_attempt()


def test_release_trial_is_noop_when_closed(mono):
    cb = CircuitBreaker(failure_threshold=1, open_duration=10.0, clock=mono)
    cb.release_trial()
    assert cb.state == "closed"
    assert cb.can_attempt()
