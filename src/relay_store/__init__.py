"""
Relay Store

Store-and-forward relay core: buffers bus events on disk and delivers them
to an HTTP endpoint behind a circuit breaker with per-message backoff.

Usage:
    from relay_store import PersistentBuffer, HttpSender, Relay

    buffer = PersistentBuffer(capacity=10_000, persist_file="buffer.json")
    with HttpSender("https://api.example.com/ingest", api_key="...") as sender:
        with Relay(buffer, sender, flush_interval=10) as relay:
            relay.on_message("sensors/kitchen", b'{"temp": 21.5}')
"""

from .buffer import (
    PersistentBuffer,
    CircuitBreaker,
    DeliveryCycle,
    DeliveryReport,
    RetentionSweep,
    DeadLetterQueue,
    Message,
    ParsedPayload,
    RawPayload,
    SendResult,
)
from .client import HttpSender
from .errors import RelayError, StorageError, DeliveryError
from .relay import Relay, RelayHealth

__version__ = "0.1.0"
__all__ = [
    "PersistentBuffer",
    "CircuitBreaker",
    "DeliveryCycle",
    "DeliveryReport",
    "RetentionSweep",
    "DeadLetterQueue",
    "Message",
    "ParsedPayload",
    "RawPayload",
    "SendResult",
    "HttpSender",
    "RelayError",
    "StorageError",
    "DeliveryError",
    "Relay",
    "RelayHealth",
]
