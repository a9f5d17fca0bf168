"""
Utility functions for the relay store.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def make_message_id(ns: int, topic: str) -> str:
    """Message id: insertion nanosecond timestamp plus topic."""
    return f"{ns}-{topic}"


def message_id_ns(msg_id: str) -> int | None:
    """Nanosecond component of an id built by ``make_message_id``, if any."""
    head, _, _ = msg_id.partition("-")
    try:
        return int(head)
    except ValueError:
        return None
