"""
Delivery cycle: one gated batch attempt against the endpoint.

Selects eligible messages, sends them as one JSON batch, classifies the
HTTP outcome and mutates the buffer accordingly. No buffer lock is held while
the sender runs.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from loguru import logger

from ..errors import StorageError
from ..metrics.registry import (
    DELIVERY_ATTEMPTS_TOTAL,
    DELIVERY_LATENCY_SECONDS,
    MESSAGES_DELIVERED_TOTAL,
)
from .store import PersistentBuffer
from .types import Message, Sender, SendResult, encode_messages


class DeliveryOutcome(str, Enum):
    """Classification of one delivery cycle."""

    BREAKER_OPEN = "breaker_open"  # no attempt made
    EMPTY = "empty"  # nothing eligible
    SUCCESS = "success"  # 2xx
    PERMANENT = "permanent"  # 4xx, dropped without retry
    TRANSIENT = "transient"  # 5xx, transport failure, anything else


def classify(result: SendResult) -> DeliveryOutcome:
    code = result.status_code
    if code is None:
        return DeliveryOutcome.TRANSIENT
    if 200 <= code < 300:
        return DeliveryOutcome.SUCCESS
    if 400 <= code < 500:
        return DeliveryOutcome.PERMANENT
    return DeliveryOutcome.TRANSIENT


@dataclass(frozen=True)
class DeliveryReport:
    """What one ``run_once`` did, for logs and metrics."""

    outcome: DeliveryOutcome
    sent: int = 0
    removed: int = 0
    retried: int = 0
    given_up: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def breaker_open(self) -> bool:
        return self.outcome is DeliveryOutcome.BREAKER_OPEN


class DeliveryCycle:
    """Periodic delivery entry point.

    Overlapping ``run_once`` calls are safe: every buffer mutation is
    serialized by the buffer, and ids already removed are ignored.
    """

    def __init__(self, buffer: PersistentBuffer, sender: Sender) -> None:
        self.buffer = buffer
        self.sender = sender

    def run_once(self) -> DeliveryReport:
        breaker = self.buffer.circuit_breaker
        if not breaker.can_attempt():
            logger.debug("Circuit breaker is open, skipping delivery")
            return DeliveryReport(outcome=DeliveryOutcome.BREAKER_OPEN)

        messages = self.buffer.get_eligible()
        if not messages:
            # a half-open trial that sent nothing must not hold the lease
            breaker.release_trial()
            return DeliveryReport(outcome=DeliveryOutcome.EMPTY)

        ids = [m.id for m in messages]
        logger.info(f"Sending batch of {len(messages)} messages")

        t0 = time.perf_counter()
        result = self.sender(encode_messages(messages))
        DELIVERY_LATENCY_SECONDS.observe(time.perf_counter() - t0)

        outcome = classify(result)
        DELIVERY_ATTEMPTS_TOTAL.labels(outcome=outcome.value).inc()
        body = result.body.decode("utf-8", errors="replace")

        if outcome is DeliveryOutcome.SUCCESS:
            breaker.record_success()
            removed, storage_error = self._remove(ids)
            MESSAGES_DELIVERED_TOTAL.inc(len(removed))
            logger.info(f"Successfully sent {len(messages)} messages")
            return DeliveryReport(
                outcome=outcome,
                sent=len(messages),
                removed=len(removed),
                status_code=result.status_code,
                error=storage_error,
            )

        if outcome is DeliveryOutcome.PERMANENT:
            # not an availability signal: breaker untouched
            logger.error(
                f"Client error {result.status_code}: {body}; "
                f"dropping {len(messages)} messages"
            )
            removed, storage_error = self._remove(ids)
            self.buffer.discard(removed, "client_error", f"HTTP {result.status_code}: {body}")
            return DeliveryReport(
                outcome=outcome,
                sent=len(messages),
                removed=len(removed),
                status_code=result.status_code,
                error=storage_error,
            )

        if result.error is not None:
            error = f"{type(result.error).__name__}: {result.error}"
            logger.warning(f"Failed to send request: {error}")
        else:
            error = f"HTTP {result.status_code}: {body}"
            logger.warning(f"Server error {result.status_code}: {body}")
        breaker.record_failure()
        try:
            failed = self.buffer.record_failure(ids, error)
        except StorageError as exc:
            # applied in memory; the next mutation rewrites the file
            failed = exc.result
            error = f"{error}; {exc}"
        return DeliveryReport(
            outcome=outcome,
            sent=len(messages),
            retried=len(failed.retried) if failed else 0,
            given_up=len(failed.given_up) if failed else 0,
            status_code=result.status_code,
            error=error,
        )

    def _remove(self, ids: list[str]) -> tuple[list[Message], Optional[str]]:
        try:
            return self.buffer.remove(ids), None
        except StorageError as exc:
            # applied in memory; the next mutation rewrites the file
            return exc.result or [], str(exc)
