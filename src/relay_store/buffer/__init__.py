"""Persistent delivery buffer

Resilient store-and-forward core:
- PersistentBuffer (bounded, drop-oldest, atomic JSON persistence)
- CircuitBreaker gate over delivery attempts
- BackoffTracker with capped exponential delays
- DeliveryCycle batch send + outcome classification
- RetentionSweep for stale messages and backoff entries
- PeriodicTask worker threads
- Dead Letter Queue (file-based NDJSON)
"""

from .types import (
    Message,
    Payload,
    ParsedPayload,
    RawPayload,
    BackoffEntry,
    SendResult,
    Sender,
    FailureResult,
    SweepResult,
    BufferStats,
    MessageRecord,
    parse_payload,
    encode_messages,
    decode_messages,
    RAW_PAYLOAD_FIELD,
)
from .policy import CircuitBreaker, CircuitState, BackoffTracker, backoff_delay
from .store import PersistentBuffer
from .delivery import DeliveryCycle, DeliveryOutcome, DeliveryReport, classify
from .retention import RetentionSweep
from .scheduler import PeriodicTask
from .dlq import DeadLetterQueue, DLQRecord

__all__ = [
    # types
    "Message",
    "Payload",
    "ParsedPayload",
    "RawPayload",
    "BackoffEntry",
    "SendResult",
    "Sender",
    "FailureResult",
    "SweepResult",
    "BufferStats",
    "MessageRecord",
    "parse_payload",
    "encode_messages",
    "decode_messages",
    "RAW_PAYLOAD_FIELD",
    # policies
    "CircuitBreaker",
    "CircuitState",
    "BackoffTracker",
    "backoff_delay",
    # runtime
    "PersistentBuffer",
    "DeliveryCycle",
    "DeliveryOutcome",
    "DeliveryReport",
    "classify",
    "RetentionSweep",
    "PeriodicTask",
    # tooling
    "DeadLetterQueue",
    "DLQRecord",
]
