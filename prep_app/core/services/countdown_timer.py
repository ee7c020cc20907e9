"""One-second countdown used to enforce a test's duration."""

from __future__ import annotations

import logging
from threading import Event, Lock, Thread
from typing import Callable

from prep_app.constants.test_constants import TIMER_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class CountdownTimer:
    """Counts down whole seconds and fires ``on_expire`` exactly once at zero.

    Ticks are serialized by an internal lock, so a background tick and a manual
    ``tick()`` never overlap. Callbacks run outside the lock, which lets
    ``on_expire`` call back into code that cancels this timer.
    """

    def __init__(
        self,
        total_seconds: int,
        on_expire: Callable[[], None],
        on_tick: Callable[[int], None] | None = None,
        interval_seconds: float = TIMER_INTERVAL_SECONDS,
    ) -> None:
        if total_seconds < 0:
            raise ValueError("Countdown length cannot be negative.")
        self._remaining = total_seconds
        self._on_expire = on_expire
        self._on_tick = on_tick
        self._interval_seconds = interval_seconds
        self._lock = Lock()
        self._stop_event = Event()
        self._thread: Thread | None = None
        self._running = False
        self._expired = False

    @property
    def remaining_seconds(self) -> int:
        with self._lock:
            return self._remaining

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def has_expired(self) -> bool:
        with self._lock:
            return self._expired

    def start(self, run_in_background: bool = True) -> None:
        """Arm the countdown; with ``run_in_background`` a daemon thread drives ``tick``."""
        with self._lock:
            if self._running or self._expired:
                raise RuntimeError("Countdown has already been started.")
            self._running = True
        if run_in_background:
            self._thread = Thread(target=self._run, name="AttemptCountdown", daemon=True)
            self._thread.start()

    def cancel(self) -> None:
        with self._lock:
            self._running = False
        self._stop_event.set()

    def tick(self) -> bool:
        """Advance one second. Returns False once the countdown is no longer running."""
        with self._lock:
            if not self._running:
                return False
            self._remaining = max(0, self._remaining - 1)
            remaining = self._remaining
            expired = remaining == 0
            if expired:
                self._running = False
                self._expired = True
        if expired:
            self._stop_event.set()

        if self._on_tick is not None:
            self._on_tick(remaining)
        if expired:
            self._on_expire()
        return not expired

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval_seconds):
            try:
                if not self.tick():
                    return
            except Exception:
                logger.exception("Countdown callback failed; stopping the timer.")
                self.cancel()
                return
