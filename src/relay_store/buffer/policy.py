"""
Delivery policies: circuit breaker and per-message exponential backoff.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

from loguru import logger

from .types import BackoffEntry

DEFAULT_BACKOFF_CAP = timedelta(minutes=5)
DEFAULT_BACKOFF_GRACE = timedelta(hours=24)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # attempts allowed
    OPEN = "open"  # attempts blocked
    HALF_OPEN = "half_open"  # one trial attempt allowed


class CircuitBreaker:
    """Three-state gate over delivery attempts to one endpoint.

    closed -> open after ``failure_threshold`` consecutive failures.
    open -> half_open lazily in ``can_attempt`` once ``open_duration`` has
    elapsed since the last failure. half_open admits a single trial: success
    closes the circuit, failure re-opens it and restarts the timer.

    A half-open trial that never reports back expires after
    ``open_duration`` and a new trial is admitted.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        open_duration: float = 30.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        if open_duration < 0:
            raise ValueError("open_duration must be >= 0")
        self.failure_threshold = failure_threshold
        self.open_duration = open_duration
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: Optional[float] = None
        self._trial_started_at: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        return self._state.value

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def last_failure_at(self) -> Optional[float]:
        return self._last_failure_at

    def can_attempt(self) -> bool:
        with self._lock:
            now = self._clock()
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.OPEN:
                assert self._last_failure_at is not None
                if now - self._last_failure_at >= self.open_duration:
                    self._state = CircuitState.HALF_OPEN
                    self._trial_started_at = now
                    logger.info("Circuit breaker half-open, admitting trial attempt")
                    return True
                return False
            # half-open: one trial at a time
            if self._trial_started_at is None or now - self._trial_started_at >= self.open_duration:
                self._trial_started_at = now
                return True
            return False

    def release_trial(self) -> None:
        """Hand back a half-open trial that made no attempt."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._trial_started_at = None

    def record_success(self) -> None:
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info("Circuit breaker closed")
            self._failures = 0
            self._state = CircuitState.CLOSED
            self._trial_started_at = None

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            self._trial_started_at = None
            if self._state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state is not CircuitState.OPEN:
                    logger.warning(
                        f"Circuit breaker open after {self._failures} consecutive failures"
                    )
                self._state = CircuitState.OPEN


def backoff_delay(attempt: int, cap: timedelta = DEFAULT_BACKOFF_CAP) -> timedelta:
    """Exponential delay ``min(2**attempt seconds, cap)``."""
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    # beyond 2**30 s the cap always wins; avoids building huge ints
    if attempt > 30:
        return cap
    return min(timedelta(seconds=2**attempt), cap)


class BackoffTracker:
    """Backoff entries keyed by message id.

    Not synchronized; the owning buffer guards every call with its lock.
    """

    def __init__(self, cap: timedelta = DEFAULT_BACKOFF_CAP) -> None:
        self.cap = cap
        self._entries: Dict[str, BackoffEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, msg_id: object) -> bool:
        return msg_id in self._entries

    def get(self, msg_id: str) -> Optional[BackoffEntry]:
        return self._entries.get(msg_id)

    def schedule(self, msg_id: str, attempt: int, now: datetime) -> BackoffEntry:
        """Create or refresh the entry for ``msg_id`` after ``attempt`` failures."""
        entry = BackoffEntry(
            attempt_count=attempt,
            next_eligible_at=now + backoff_delay(attempt, self.cap),
            max_delay=self.cap,
        )
        self._entries[msg_id] = entry
        return entry

    def is_eligible(self, msg_id: str, now: datetime) -> bool:
        entry = self._entries.get(msg_id)
        return entry is None or now >= entry.next_eligible_at

    def discard(self, ids: Iterable[str]) -> None:
        for msg_id in ids:
            self._entries.pop(msg_id, None)

    def expire(self, now: datetime, grace: timedelta = DEFAULT_BACKOFF_GRACE) -> int:
        """Drop entries whose ``next_eligible_at + grace`` has passed."""
        stale = [k for k, e in self._entries.items() if now > e.next_eligible_at + grace]
        for k in stale:
            del self._entries[k]
        return len(stale)
