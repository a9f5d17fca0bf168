"""
File-based dead letter queue (NDJSON).

Every message the relay gives up on (overflow, client error, max retries,
retention) can be appended here so the data loss is recoverable by hand.
"""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

from loguru import logger

from .types import Message, MessageRecord


@dataclass(frozen=True)
class DLQRecord:
    ts: float
    reason: str
    error: str
    metadata: dict[str, Any] = field(default_factory=dict)
    items: list[Message] = field(default_factory=list)


class DeadLetterQueue:
    """Append-only NDJSON dead letter file.

    Writes are serialized with a lock so concurrent callers never interleave
    partial lines.
    """

    def __init__(self, path: str | Path, *, mkdirs: bool = True) -> None:
        self.path = Path(path)
        if mkdirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def save(
        self,
        items: Sequence[Message],
        reason: str,
        error: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        rec = {
            "ts": time.time(),
            "reason": reason,
            "error": error,
            "metadata": metadata or {},
            "items": [MessageRecord.from_message(m).model_dump(mode="json") for m in items],
        }
        line = json.dumps(rec, ensure_ascii=False) + "\n"
        with self._lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line)
        logger.debug(f"DLQ: saved {len(items)} message(s) reason={reason}")

    def replay(self, max_records: int = 100) -> list[DLQRecord]:
        """Read up to ``max_records`` records from the start of the file."""
        if not self.path.exists():
            return []
        out: list[DLQRecord] = []
        with self._lock:
            with self.path.open("r", encoding="utf-8") as f:
                for line in f:
                    if len(out) >= max_records:
                        break
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        d = json.loads(line)
                        items = [MessageRecord(**it).to_message() for it in d.get("items", [])]
                    except (ValueError, TypeError) as exc:
                        logger.warning(f"DLQ: skipping unreadable line: {exc}")
                        continue
                    out.append(
                        DLQRecord(
                            ts=float(d.get("ts", 0.0)),
                            reason=d.get("reason", ""),
                            error=d.get("error", ""),
                            metadata=d.get("metadata") or {},
                            items=items,
                        )
                    )
        return out
