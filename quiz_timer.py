"""Per-question countdown for timed quizzes.

A QuestionTimer owns at most one armed handle. Arming for a new question
always cancels the previous handle first, and a firing whose
(session_id, index) key is no longer current is dropped. An expiry leaves the
timer armed; the owner moves on by re-arming or cancelling it.
"""

import math
import threading
import time


class ThreadingScheduler:
    """Runs callbacks on daemon `threading.Timer` threads."""

    def call_later(self, delay: float, callback):
        t = threading.Timer(delay, callback)
        t.daemon = True
        t.start()
        return t


class QuestionTimer:
    def __init__(self, scheduler, seconds: int, on_expire, clock=time.monotonic):
        if seconds <= 0:
            raise ValueError("seconds per question must be positive")
        self.scheduler = scheduler
        self.seconds = seconds
        self.on_expire = on_expire
        self.clock = clock
        self._handle = None
        self._key: tuple | None = None
        self._deadline: float | None = None

    @property
    def key(self) -> tuple | None:
        return self._key

    def arm(self, session_id: str, index: int) -> None:
        """Reset the countdown for the question at `index`."""
        self.cancel()
        key = (session_id, index)
        self._key = key
        self._deadline = self.clock() + self.seconds
        self._handle = self.scheduler.call_later(self.seconds, lambda: self._fire(key))

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._key = None
        self._deadline = None

    def remaining(self) -> int | None:
        """Whole seconds left on the armed countdown, or None when disarmed."""
        if self._deadline is None:
            return None
        return max(0, math.ceil(self._deadline - self.clock()))

    def _fire(self, key: tuple) -> None:
        # runs on the scheduler thread; arm/cancel stay with the owner, which
        # re-checks the key under its own lock
        if key != self._key:
            return
        self.on_expire(key)
