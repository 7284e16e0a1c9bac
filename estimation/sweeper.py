"""
Purpose: Background abandonment sweep, independent of event arrival.
What it does:
- Runs `sweep()` every `interval_sec` on a daemon thread.
- Stops promptly on stop(): the wait between passes is interruptible.

Rule: The sweep callable owns all locking; this class only schedules it.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class AbandonSweeper:
    def __init__(self, sweep: Callable[[], object], interval_sec: float = 30.0):
        self._sweep = sweep
        self.interval_sec = interval_sec
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name="abandon-sweeper", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, join: bool = True, timeout: float | None = None) -> None:
        self._stop_event.set()
        if join and self._thread.is_alive():
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        #wait() returns True as soon as stop() is called
        while not self._stop_event.wait(self.interval_sec):
            try:
                self._sweep()
            except Exception:
                # keep sweeping; a failed pass is retried on the next tick
                logger.exception("Abandonment sweep failed")
