from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Sequence, Union

from pydantic import BaseModel, TypeAdapter, field_validator

# Field name used to wrap inbound bytes that are not a JSON object.
RAW_PAYLOAD_FIELD = "raw_payload"


@dataclass(frozen=True)
class ParsedPayload:
    """Inbound event that decoded to a JSON object."""

    data: dict[str, Any]

    def to_json(self) -> dict[str, Any]:
        return self.data


@dataclass(frozen=True)
class RawPayload:
    """Inbound event kept as raw bytes (not JSON, or JSON but not an object)."""

    raw: bytes

    def to_json(self) -> dict[str, Any]:
        return {RAW_PAYLOAD_FIELD: self.raw.decode("utf-8", errors="replace")}


Payload = Union[ParsedPayload, RawPayload]


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def parse_payload(raw: bytes) -> Payload:
    """Decode inbound bytes; falls back to raw wrapping, never raises.

    NaN and Infinity are rejected so the stored payload always re-encodes
    unchanged. An object shaped like the raw wrapper is tagged raw here, the
    same way it reads back from disk.
    """
    try:
        data = json.loads(raw, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError, RecursionError):
        return RawPayload(bytes(raw))
    if not isinstance(data, dict):
        return RawPayload(bytes(raw))
    return payload_from_json(data)


def payload_from_json(data: dict[str, Any]) -> Payload:
    if set(data) == {RAW_PAYLOAD_FIELD} and isinstance(data[RAW_PAYLOAD_FIELD], str):
        return RawPayload(data[RAW_PAYLOAD_FIELD].encode("utf-8"))
    return ParsedPayload(data)


@dataclass(frozen=True)
class Message:
    """Buffered event. Instances are values; the buffer replaces them on retry."""

    id: str
    topic: str
    payload: Payload
    received_at: datetime
    retry_count: int = 0


@dataclass
class BackoffEntry:
    """Scheduling state delaying a message's next delivery attempt."""

    attempt_count: int
    next_eligible_at: datetime
    max_delay: timedelta


@dataclass(frozen=True)
class SendResult:
    """Outcome of one outbound attempt.

    ``status_code`` is None when the attempt failed before a response arrived;
    ``error`` then carries the transport failure.
    """

    status_code: Optional[int]
    body: bytes = b""
    error: Optional[Exception] = None

    @property
    def is_transport_error(self) -> bool:
        return self.status_code is None


# Performs one HTTP POST of a serialized batch.
Sender = Callable[[bytes], SendResult]


@dataclass(frozen=True)
class FailureResult:
    """Result of ``PersistentBuffer.record_failure``."""

    retried: list[Message] = field(default_factory=list)
    given_up: list[Message] = field(default_factory=list)


@dataclass(frozen=True)
class SweepResult:
    """Result of one retention pass."""

    expired_messages: list[Message] = field(default_factory=list)
    expired_backoff: int = 0


@dataclass(frozen=True)
class BufferStats:
    total_messages: int
    eligible_messages: int
    capacity: int
    circuit_breaker: str
    backoff_count: int
    last_flush: Optional[datetime]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_messages": self.total_messages,
            "pending_messages": self.eligible_messages,
            "capacity": self.capacity,
            "circuit_breaker": self.circuit_breaker,
            "backoff_count": self.backoff_count,
            "last_flush": self.last_flush.isoformat() if self.last_flush else None,
        }


# --- persisted / wire format ---


class MessageRecord(BaseModel):
    """On-disk and on-wire shape of a message."""

    id: str
    topic: str
    payload: dict[str, Any]
    timestamp: datetime
    retries: int = 0

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @classmethod
    def from_message(cls, msg: Message) -> "MessageRecord":
        return cls(
            id=msg.id,
            topic=msg.topic,
            payload=msg.payload.to_json(),
            timestamp=msg.received_at,
            retries=msg.retry_count,
        )

    def to_message(self) -> Message:
        return Message(
            id=self.id,
            topic=self.topic,
            payload=payload_from_json(self.payload),
            received_at=self.timestamp,
            retry_count=self.retries,
        )


_records = TypeAdapter(list[MessageRecord])


def encode_messages(messages: Sequence[Message]) -> bytes:
    """Serialize messages as a JSON array of records."""
    return _records.dump_json([MessageRecord.from_message(m) for m in messages])


def decode_messages(data: bytes | str) -> list[Message]:
    """Parse a JSON array of records. Raises ``pydantic.ValidationError`` on bad input."""
    return [r.to_message() for r in _records.validate_json(data)]
