from __future__ import annotations

from datetime import timedelta

from loguru import logger

from ..errors import StorageError
from .policy import DEFAULT_BACKOFF_GRACE
from .store import PersistentBuffer
from .types import SweepResult


class RetentionSweep:
    """Periodic expiry of old messages and stale backoff entries."""

    def __init__(
        self,
        buffer: PersistentBuffer,
        retention: timedelta,
        backoff_grace: timedelta = DEFAULT_BACKOFF_GRACE,
    ) -> None:
        if retention <= timedelta(0):
            raise ValueError("retention must be positive")
        self.buffer = buffer
        self.retention = retention
        self.backoff_grace = backoff_grace

    def run_once(self) -> SweepResult:
        try:
            return self.buffer.cleanup(self.retention, self.backoff_grace)
        except StorageError as exc:
            logger.error(f"Retention sweep could not persist buffer: {exc}")
            return SweepResult()
