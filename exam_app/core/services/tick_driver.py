"""Background thread that feeds elapsed time to running attempts."""

from __future__ import annotations

import logging
import math
from threading import Event, Thread
import time
from typing import Callable

from exam_app.constants.exam_constants import (
    ACTIVE_ATTEMPT_STALE_AFTER_SECONDS,
    STALE_CHECK_INTERVAL_SECONDS,
    TICK_INTERVAL_SECONDS,
)
from exam_app.core.exam_manager import ExamManager

logger = logging.getLogger(__name__)


class TickDriver:
    """Calls ``ExamManager.tick_all`` at a fixed cadence with the measured elapsed time.

    Elapsed time comes from a monotonic clock, so a late wake-up is charged in
    full rather than as one nominal interval.
    """

    def __init__(
        self,
        manager: ExamManager,
        interval_seconds: float = TICK_INTERVAL_SECONDS,
        stale_check_seconds: float = STALE_CHECK_INTERVAL_SECONDS,
        stale_after_seconds: float = ACTIVE_ATTEMPT_STALE_AFTER_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if not (interval_seconds > 0 and math.isfinite(interval_seconds)):
            raise ValueError("Tick interval must be a positive, finite number of seconds.")
        self._manager = manager
        self._interval_seconds = interval_seconds
        self._stale_check_seconds = stale_check_seconds
        self._stale_after_seconds = stale_after_seconds
        self._monotonic = monotonic
        self._stop_event = Event()
        self._thread: Thread | None = None
        self._last_tick: float | None = None
        self._last_stale_check: float | None = None

    def start(self) -> Thread:
        """Start the driver in a background daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop_event.clear()
        self._last_tick = self._monotonic()
        self._last_stale_check = self._last_tick
        self._thread = Thread(target=self._run, name="ExamTickDriver", daemon=True)
        self._thread.start()
        logger.info("Tick driver started (every %.1fs)", self._interval_seconds)
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Tick driver stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> None:
        """Perform one tick cycle; used by the thread loop and by tests."""
        now = self._monotonic()
        if self._last_tick is None:
            self._last_tick = now
            self._last_stale_check = now
        elapsed_ms = (now - self._last_tick) * 1000
        self._last_tick = now

        expired = self._manager.tick_all(elapsed_ms / 1000)
        for record in expired:
            logger.info("Attempt %s expired for student %s", record.session_id, record.student_id)

        if self._last_stale_check is not None and now - self._last_stale_check >= self._stale_check_seconds:
            self._last_stale_check = now
            for record in self._manager.abandon_stale_attempts(self._stale_after_seconds):
                logger.warning(
                    "Attempt %s abandoned after %.0fs without activity",
                    record.session_id,
                    self._stale_after_seconds,
                )

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Tick cycle failed")
