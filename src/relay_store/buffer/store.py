"""
Persistent, bounded, crash-recoverable message buffer.

The buffer owns the ordered message sequence (oldest first), the per-message
backoff entries and the circuit breaker guarding the delivery endpoint.
Every observable mutation is persisted with an atomic rewrite (temp file +
``os.replace``). The snapshot to persist is taken under the buffer lock; the
file I/O runs after the lock is released.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence

from loguru import logger
from pydantic import ValidationError

from ..errors import StorageError
from ..metrics.registry import MESSAGES_DROPPED_TOTAL, STORAGE_ERRORS_TOTAL
from ..utils import make_message_id, message_id_ns, utc_now
from .dlq import DeadLetterQueue
from .locks import RWLock
from .policy import DEFAULT_BACKOFF_CAP, DEFAULT_BACKOFF_GRACE, BackoffTracker, CircuitBreaker
from .types import (
    BackoffEntry,
    BufferStats,
    FailureResult,
    Message,
    ParsedPayload,
    Payload,
    SweepResult,
    decode_messages,
    encode_messages,
)

_Snapshot = tuple[int, list[Message]]


class PersistentBuffer:
    """Ordered, capacity-bounded, disk-backed store of pending messages.

    Example:
        buf = PersistentBuffer(capacity=10_000, persist_file="/var/lib/relay/buffer.json")
        msg = buf.add("sensors/kitchen", ParsedPayload({"temp": 21.5}))
        batch = buf.get_eligible()
        buf.remove([m.id for m in batch])

    Args:
        capacity: Maximum number of buffered messages; overflow drops the oldest.
        persist_file: JSON file holding the buffer. None keeps the buffer in memory.
        max_retries: Failed attempts after which a message is given up.
        backoff_cap: Ceiling of the exponential retry delay.
        circuit_breaker: Breaker for the delivery endpoint (a default one is created).
        dead_letters: Optional file receiving every message dropped without delivery.
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        capacity: int,
        persist_file: str | Path | None = None,
        *,
        max_retries: int = 5,
        backoff_cap: timedelta = DEFAULT_BACKOFF_CAP,
        circuit_breaker: Optional[CircuitBreaker] = None,
        dead_letters: Optional[DeadLetterQueue] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if max_retries <= 0:
            raise ValueError("max_retries must be > 0")

        self.capacity = capacity
        self.persist_file = Path(persist_file) if persist_file is not None else None
        self.max_retries = max_retries
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.dead_letters = dead_letters
        self._clock = clock

        self._messages: list[Message] = []
        self._backoff = BackoffTracker(cap=backoff_cap)
        self._last_flush: Optional[datetime] = None
        self._last_ns = 0

        self._lock = RWLock()
        # Serializes file writes; versions keep a stale snapshot from
        # overwriting a newer one when writers race after releasing _lock.
        self._io_lock = threading.Lock()
        self._version = 0
        self._persisted_version = 0

        self.load_from_disk()

    # --------------------------- read side

    def __len__(self) -> int:
        with self._lock.read_lock():
            return len(self._messages)

    def messages(self) -> list[Message]:
        """Copy of the buffered sequence, oldest first."""
        with self._lock.read_lock():
            return list(self._messages)

    @property
    def last_flush_at(self) -> Optional[datetime]:
        return self._last_flush

    def backoff_entry(self, msg_id: str) -> Optional[BackoffEntry]:
        with self._lock.read_lock():
            return self._backoff.get(msg_id)

    def get_eligible(self) -> list[Message]:
        """Messages outside their backoff window, in buffer order."""
        with self._lock.read_lock():
            now = self._clock()
            return [m for m in self._messages if self._backoff.is_eligible(m.id, now)]

    def stats(self) -> BufferStats:
        with self._lock.read_lock():
            now = self._clock()
            # counted inline: get_eligible would re-acquire the read lock
            eligible = sum(1 for m in self._messages if self._backoff.is_eligible(m.id, now))
            return BufferStats(
                total_messages=len(self._messages),
                eligible_messages=eligible,
                capacity=self.capacity,
                circuit_breaker=self.circuit_breaker.state,
                backoff_count=len(self._backoff),
                last_flush=self._last_flush,
            )

    # --------------------------- mutations

    def add(
        self,
        topic: str,
        payload: Payload | dict[str, Any],
        received_at: Optional[datetime] = None,
    ) -> Message:
        """Append a message, rotating out the oldest on overflow, and persist.

        Raises:
            StorageError: the buffer file could not be written. The message
                stays buffered in memory.
        """
        if isinstance(payload, dict):
            payload = ParsedPayload(payload)

        with self._lock.write_lock():
            msg = Message(
                id=self._next_id(topic),
                topic=topic,
                payload=payload,
                received_at=received_at or self._clock(),
                retry_count=0,
            )
            self._messages.append(msg)

            evicted: list[Message] = []
            overflow = len(self._messages) - self.capacity
            if overflow > 0:
                evicted = self._messages[:overflow]
                del self._messages[:overflow]
                self._backoff.discard(m.id for m in evicted)
            snapshot = self._snapshot()

        if evicted:
            logger.warning(
                f"Buffer full (capacity {self.capacity}), dropped {len(evicted)} oldest message(s)"
            )
            self.discard(evicted, "overflow")

        self._persist(snapshot)
        return msg

    def remove(self, ids: Iterable[str]) -> list[Message]:
        """Delete messages and their backoff entries; records the flush time.

        Raises:
            StorageError: the file write failed; ``result`` holds the removed
                messages.
        """
        wanted = set(ids)
        with self._lock.write_lock():
            removed = [m for m in self._messages if m.id in wanted]
            if removed:
                self._messages = [m for m in self._messages if m.id not in wanted]
            self._backoff.discard(wanted)
            self._last_flush = self._clock()
            snapshot = self._snapshot()

        try:
            self._persist(snapshot)
        except StorageError as exc:
            exc.result = removed
            raise
        return removed

    def record_failure(self, ids: Iterable[str], error: str = "") -> FailureResult:
        """Count one failed attempt for each message.

        Messages reaching ``max_retries`` are removed (data loss); the others
        get a backoff entry of ``min(2**retry_count s, backoff_cap)``. Ids no
        longer buffered are ignored.

        Raises:
            StorageError: the file write failed; ``result`` holds the
                ``FailureResult`` already applied in memory.
        """
        wanted = set(ids)
        retried: list[Message] = []
        given_up: list[Message] = []

        with self._lock.write_lock():
            now = self._clock()
            kept: list[Message] = []
            for m in self._messages:
                if m.id not in wanted:
                    kept.append(m)
                    continue
                m = replace(m, retry_count=m.retry_count + 1)
                if m.retry_count >= self.max_retries:
                    self._backoff.discard([m.id])
                    given_up.append(m)
                    continue
                entry = self._backoff.schedule(m.id, m.retry_count, now)
                logger.debug(
                    f"Message {m.id} failed (attempt {m.retry_count}), "
                    f"retrying in {(entry.next_eligible_at - now).total_seconds():.0f}s"
                )
                retried.append(m)
                kept.append(m)
            self._messages = kept
            snapshot = self._snapshot()

        for m in given_up:
            logger.warning(f"Message {m.id} exceeded max retries ({self.max_retries}), removing")
        self.discard(given_up, "max_retries", error)

        result = FailureResult(retried=retried, given_up=given_up)
        try:
            self._persist(snapshot)
        except StorageError as exc:
            exc.result = result
            raise
        return result

    def cleanup(
        self,
        retention: timedelta,
        backoff_grace: timedelta = DEFAULT_BACKOFF_GRACE,
    ) -> SweepResult:
        """Expire stale backoff entries and messages older than ``retention``.

        Persists only when a message was removed.
        """
        with self._lock.write_lock():
            now = self._clock()
            expired_backoff = self._backoff.expire(now, backoff_grace)

            cutoff = now - retention
            expired = [m for m in self._messages if m.received_at <= cutoff]
            snapshot: Optional[_Snapshot] = None
            if expired:
                self._messages = [m for m in self._messages if m.received_at > cutoff]
                self._backoff.discard(m.id for m in expired)
                snapshot = self._snapshot()

        if expired:
            logger.info(f"Cleaned up {len(expired)} old messages")
            self.discard(expired, "retention")
        if expired_backoff:
            logger.debug(f"Cleaned up {expired_backoff} stale backoff entries")
        if snapshot is not None:
            self._persist(snapshot)
        return SweepResult(expired_messages=expired, expired_backoff=expired_backoff)

    def discard(self, messages: Sequence[Message], reason: str, error: str = "") -> None:
        """Account for messages dropped without delivery (metrics + dead letters)."""
        if not messages:
            return
        MESSAGES_DROPPED_TOTAL.labels(reason=reason).inc(len(messages))
        if self.dead_letters is None:
            return
        try:
            self.dead_letters.save(messages, reason, error)
        except OSError as exc:
            logger.error(f"Failed to write {len(messages)} message(s) to dead letter file: {exc}")

    # --------------------------- persistence

    def load_from_disk(self) -> None:
        """Load the persisted buffer. Missing or corrupt files start empty."""
        if self.persist_file is None:
            return

        try:
            data = self.persist_file.read_bytes()
        except FileNotFoundError:
            logger.info("No existing buffer file found, starting fresh")
            return
        except OSError as exc:
            logger.error(f"Failed to read buffer file {self.persist_file}: {exc}")
            return

        try:
            messages = decode_messages(data)
        except ValidationError as exc:
            logger.error(
                f"Failed to parse buffer file {self.persist_file}, starting empty "
                f"({exc.error_count()} error(s))"
            )
            return

        if len(messages) > self.capacity:
            logger.warning(
                f"Buffer file holds {len(messages)} messages, keeping newest {self.capacity}"
            )
            messages = messages[-self.capacity :]

        with self._lock.write_lock():
            self._messages = messages
            ns = [message_id_ns(m.id) for m in messages]
            self._last_ns = max((n for n in ns if n is not None), default=0)

        logger.info(f"Loaded {len(messages)} messages from disk")

    def _next_id(self, topic: str) -> str:
        # caller holds the write lock
        ns = time.time_ns()
        if ns <= self._last_ns:
            ns = self._last_ns + 1
        self._last_ns = ns
        return make_message_id(ns, topic)

    def _snapshot(self) -> _Snapshot:
        # caller holds the write lock
        self._version += 1
        return self._version, list(self._messages)

    def _persist(self, snapshot: _Snapshot) -> None:
        if self.persist_file is None:
            return
        version, messages = snapshot
        with self._io_lock:
            if version <= self._persisted_version:
                return  # a newer state is already on disk
            try:
                self._write_atomic(encode_messages(messages))
            except OSError as exc:
                STORAGE_ERRORS_TOTAL.inc()
                logger.error(f"Failed to persist buffer to {self.persist_file}: {exc}")
                raise StorageError(f"failed to persist buffer to {self.persist_file}: {exc}") from exc
            self._persisted_version = version

    def _write_atomic(self, data: bytes) -> None:
        path = self.persist_file
        assert path is not None
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
