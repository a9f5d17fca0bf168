"""
Relay: composition root of the delivery core.

Owns one persistent buffer, the delivery cycle, the retention sweep and one
worker thread per periodic routine (delivery, retention, stats). Inbound
sources call ``on_message`` from any thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from loguru import logger

from .buffer.delivery import DeliveryCycle, DeliveryReport
from .buffer.policy import DEFAULT_BACKOFF_GRACE
from .buffer.retention import RetentionSweep
from .buffer.scheduler import PeriodicTask
from .buffer.store import PersistentBuffer
from .buffer.types import BufferStats, Message, ParsedPayload, Sender, SweepResult, parse_payload
from .errors import StorageError
from .metrics.registry import (
    BUFFER_BACKOFF_ENTRIES,
    BUFFER_ELIGIBLE,
    BUFFER_MESSAGES,
    CIRCUIT_STATE,
    CIRCUIT_STATE_VALUES,
    MESSAGES_INGESTED_TOTAL,
)


@dataclass(frozen=True)
class RelayHealth:
    tasks_alive: int
    queue_size: int
    capacity: int
    eligible: int
    circuit_state: str
    backoff_count: int


class Relay:
    """Store-and-forward relay around a ``PersistentBuffer``.

    Example:
        buffer = PersistentBuffer(capacity=10_000, persist_file="buffer.json")
        with HttpSender(url, api_key=key) as sender, Relay(buffer, sender) as relay:
            subscribe(topics, relay.on_message)
            wait_for_shutdown()

    Args:
        buffer: The buffer to fill and drain.
        sender: Performs one outbound attempt per delivery cycle.
        flush_interval: Seconds between delivery cycles.
        cleanup_interval: Seconds between retention sweeps.
        retention: Maximum age of a buffered message.
        stats_interval: Seconds between stats log lines / gauge updates.
        backoff_grace: Age past ``next_eligible_at`` at which backoff entries are dropped.
        stop_timeout: Seconds ``stop`` waits for each worker thread.
    """

    def __init__(
        self,
        buffer: PersistentBuffer,
        sender: Sender,
        *,
        flush_interval: float = 10.0,
        cleanup_interval: float = 3600.0,
        retention: timedelta = timedelta(days=7),
        stats_interval: float = 60.0,
        backoff_grace: timedelta = DEFAULT_BACKOFF_GRACE,
        stop_timeout: Optional[float] = None,
    ) -> None:
        self.buffer = buffer
        self.delivery = DeliveryCycle(buffer, sender)
        self.sweep = RetentionSweep(buffer, retention, backoff_grace)
        self.stop_timeout = stop_timeout
        self._tasks = [
            PeriodicTask("relay-delivery", flush_interval, self.flush),
            PeriodicTask("relay-retention", cleanup_interval, self.cleanup),
            PeriodicTask("relay-stats", stats_interval, self.emit_stats),
        ]

    # --------------------------- ingestion

    def ingest(self, topic: str, raw: bytes) -> Message:
        """Parse and buffer one inbound event.

        Raises:
            StorageError: the buffer could not be persisted.
        """
        payload = parse_payload(raw)
        if isinstance(payload, ParsedPayload):
            MESSAGES_INGESTED_TOTAL.labels(payload="json").inc()
        else:
            logger.debug(f"Payload on {topic} is not a JSON object, storing raw bytes")
            MESSAGES_INGESTED_TOTAL.labels(payload="raw").inc()
        return self.buffer.add(topic, payload)

    def on_message(self, topic: str, raw: bytes) -> None:
        """Inbound callback for bus subscriptions; safe from any thread."""
        try:
            self.ingest(topic, raw)
        except StorageError as exc:
            logger.error(f"Failed to add message to buffer: {exc}")

    # --------------------------- periodic routines

    def flush(self) -> DeliveryReport:
        report = self.delivery.run_once()
        if report.error:
            logger.warning(f"Failed to flush buffer: {report.error}")
        return report

    def cleanup(self) -> SweepResult:
        return self.sweep.run_once()

    def emit_stats(self) -> BufferStats:
        stats = self.buffer.stats()
        BUFFER_MESSAGES.set(stats.total_messages)
        BUFFER_ELIGIBLE.set(stats.eligible_messages)
        BUFFER_BACKOFF_ENTRIES.set(stats.backoff_count)
        CIRCUIT_STATE.set(CIRCUIT_STATE_VALUES.get(stats.circuit_breaker, 0))
        logger.info(f"Buffer stats: {stats.to_dict()}")
        return stats

    # --------------------------- lifecycle

    def start(self) -> None:
        logger.info(f"Starting relay with {len(self.buffer)} buffered messages")
        for task in self._tasks:
            task.start()

    def stop(self) -> None:
        for task in self._tasks:
            task.stop(self.stop_timeout)
        logger.info("Relay stopped")

    def health(self) -> RelayHealth:
        stats = self.buffer.stats()
        return RelayHealth(
            tasks_alive=sum(1 for t in self._tasks if t.alive),
            queue_size=stats.total_messages,
            capacity=stats.capacity,
            eligible=stats.eligible_messages,
            circuit_state=stats.circuit_breaker,
            backoff_count=stats.backoff_count,
        )

    def __enter__(self) -> "Relay":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
