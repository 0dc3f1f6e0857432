"""Fixed-rate scheduler for the periodic compass fusion tick.

A FixedRateScheduler runs one task on a dedicated daemon thread at a fixed
period. The single worker thread makes ticks non-reentrant: a tick that
overruns its slot delays the next one, and slots missed meanwhile are
skipped rather than queued.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class FixedRateScheduler:
    """
    Run ``task`` every ``period`` seconds until cancelled.

    Args:
        period: Tick period in seconds (> 0).
        task: Zero-argument callable executed on each tick.
        name: Worker thread name.
        run_immediately: Fire the first tick at start rather than after one
                         period (timer semantics with zero initial delay).

    Example:
        >>> ticks = []
        >>> scheduler = FixedRateScheduler(0.01, lambda: ticks.append(1))
        >>> scheduler.start()
        >>> scheduler.cancel()
    """

    def __init__(
        self,
        period: float,
        task: Callable[[], None],
        name: str = "indoornav-tick",
        run_immediately: bool = True,
    ):
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        self.period = float(period)
        self.task = task
        self.name = name
        self.run_immediately = run_immediately
        self.skipped_ticks = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start ticking. No-op if already running."""
        if self.running:
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            args=(self._stop_event,),
            name=self.name,
            daemon=True,
        )
        self._thread.start()

    def cancel(self, timeout_seconds: Optional[float] = None) -> None:
        """
        Stop ticking and wait for an in-flight tick to finish.

        Safe to call repeatedly, and from inside the task itself (in which
        case the current tick completes and no further tick runs).
        """
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout=timeout_seconds)
        self._thread = None

    def _run(self, stop_event: threading.Event) -> None:
        next_due = time.monotonic()
        if not self.run_immediately:
            next_due += self.period

        while not stop_event.wait(timeout=max(0.0, next_due - time.monotonic())):
            try:
                self.task()
            except Exception:
                logger.exception("Scheduled task %s failed", self.name)

            next_due += self.period
            now = time.monotonic()
            if now > next_due:
                missed = int((now - next_due) // self.period) + 1
                self.skipped_ticks += missed
                next_due += missed * self.period
