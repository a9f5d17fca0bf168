from __future__ import annotations

from datetime import timedelta
from typing import Optional

from relay_store import CircuitBreaker, DeadLetterQueue, HttpSender, PersistentBuffer, Relay
from relay_store.buffer.types import Sender

from .config import RelaySettings


def build_buffer(settings: RelaySettings) -> PersistentBuffer:
    b = settings.buffer
    cb = settings.circuit_breaker
    return PersistentBuffer(
        capacity=b.max_size,
        persist_file=b.persist_file,
        max_retries=b.max_retries,
        backoff_cap=timedelta(seconds=b.backoff_cap),
        circuit_breaker=CircuitBreaker(failure_threshold=cb.max_failures, open_duration=cb.timeout),
        dead_letters=DeadLetterQueue(b.dead_letter_file) if b.dead_letter_file else None,
    )


def build_sender(settings: RelaySettings) -> HttpSender:
    return HttpSender(settings.api.url, settings.api.key, timeout=settings.api.timeout)


def build_relay(settings: RelaySettings, sender: Optional[Sender] = None) -> Relay:
    """Wire buffer, sender and periodic routines from settings."""
    b = settings.buffer
    return Relay(
        build_buffer(settings),
        sender or build_sender(settings),
        flush_interval=b.flush_interval,
        cleanup_interval=b.cleanup_interval,
        retention=b.retention,
        stats_interval=settings.logging.stats_interval,
        # an in-flight attempt is bounded by the HTTP timeout
        stop_timeout=settings.api.timeout + 5.0,
    )
