"""Background periodic task with a skip-if-running guard.

// [LAW:single-enforcer] Overlap prevention for periodic work is enforced here only.

A tick that arrives while the previous invocation is still running is
skipped, never queued. stop() prevents every future invocation; one that is
already running is allowed to finish.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    def __init__(self, name: str, interval_sec: float, fn: Callable[[], object]) -> None:
        interval = float(interval_sec)
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval_sec!r}")
        self.name = name
        self.interval_sec = interval
        self._fn = fn
        self._stop = threading.Event()
        self._busy = threading.Lock()
        self._thread: threading.Thread | None = None
        self.runs = 0
        self.skipped = 0
        self.failures = 0

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._stop.is_set()

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"periodic task {self.name!r} already started")
        self._thread = threading.Thread(target=self._loop, name=f"heapcensus-{self.name}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread() and timeout:
            thread.join(timeout)

    def run_once(self) -> bool:
        """Invoke the task now unless an invocation is in flight. Returns whether it ran."""
        return self._run(scheduled=False)

    def _run(self, *, scheduled: bool) -> bool:
        if not self._busy.acquire(blocking=False):
            self.skipped += 1
            logger.debug("periodic task %s still running; tick skipped", self.name)
            return False
        try:
            # A tick that raced with stop() must not start new work.
            if scheduled and self._stop.is_set():
                return False
            self.runs += 1
            self._fn()
        except Exception:
            self.failures += 1
            logger.exception("periodic task %s failed; cycle abandoned", self.name)
        finally:
            self._busy.release()
        return True

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_sec):
            self._run(scheduled=True)
