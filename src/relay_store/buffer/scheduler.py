from __future__ import annotations

import threading
from typing import Any, Callable, Optional

from loguru import logger


class PeriodicTask:
    """Runs ``fn`` every ``interval`` seconds on a dedicated daemon thread.

    ``stop()`` stops scheduling and waits for a run in progress to finish, so
    an in-flight delivery completes (or times out) before shutdown.
    Exceptions raised by ``fn`` are logged and the loop continues.
    """

    def __init__(self, name: str, interval: float, fn: Callable[[], Any]) -> None:
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.name = name
        self.interval = interval
        self._fn = fn
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.alive and not self._stop.is_set():
            return
        # a loop still winding down after stop() keeps its own, already set, event
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run, args=(self._stop,), name=self.name, daemon=True
        )
        self._thread.start()
        logger.debug(f"{self.name} started (every {self.interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning(f"{self.name} did not stop within {timeout}s")
                return
            self._thread = None
        logger.debug(f"{self.name} stopped")

    def _run(self, stop: threading.Event) -> None:
        # first run after one interval, like a ticker
        while not stop.wait(self.interval):
            try:
                self._fn()
            except Exception:
                logger.exception(f"{self.name} run failed")
