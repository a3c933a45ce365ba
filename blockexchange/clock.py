"""Wall-clock and simulated clocks with cancellable one-shot timers.

Times and durations are expressed in seconds.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from typing import Callable, Optional


class Timer:
    """A one-shot timer that runs a callback once its deadline is reached."""

    def __init__(
        self,
        deadline: float,
        callback: Callable[[], object],
        release: Optional[Callable[[], object]] = None,
    ) -> None:
        self.deadline = deadline
        self._callback = callback
        self._release = release
        self._pending = True
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        """True while the timer has neither fired nor been cancelled."""
        with self._lock:
            return self._pending

    def cancel(self) -> bool:
        """Stop the timer; return True if it was still pending."""
        with self._lock:
            was_pending = self._pending
            self._pending = False
        if was_pending and self._release is not None:
            self._release()
        return was_pending

    def _fire(self) -> None:
        with self._lock:
            if not self._pending:
                return
            self._pending = False
        self._callback()


class Clock:
    """The real clock: monotonic time and timers run on background threads."""

    def now(self) -> float:
        """Return the current monotonic time."""
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], object]) -> Timer:
        """Run ``callback`` on a background thread after ``delay`` seconds."""
        delay = max(0.0, delay)
        timer = Timer(self.now() + delay, callback)
        thread = threading.Timer(delay, timer._fire)
        thread.daemon = True
        timer._release = thread.cancel
        thread.start()
        return timer


class MockClock:
    """A clock whose time only moves when :meth:`add` is called.

    Due timers fire in deadline order on the thread that advances the clock,
    and each callback observes ``now()`` equal to its own deadline.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._timers: list[tuple[float, int, Timer]] = []
        self._sequence = itertools.count()
        self._lock = threading.Lock()

    def now(self) -> float:
        """Return the simulated time."""
        with self._lock:
            return self._now

    def call_later(self, delay: float, callback: Callable[[], object]) -> Timer:
        """Run ``callback`` once the simulated time passes ``now() + delay``."""
        with self._lock:
            timer = Timer(self._now + max(0.0, delay), callback)
            heapq.heappush(self._timers, (timer.deadline, next(self._sequence), timer))
        return timer

    def add(self, delta: float) -> None:
        """Advance the simulated time by ``delta``, firing every timer that falls due."""
        if delta < 0:
            raise ValueError("cannot move a clock backwards")
        with self._lock:
            target = self._now + delta
        while True:
            with self._lock:
                while self._timers and not self._timers[0][2].pending:
                    heapq.heappop(self._timers)
                if not self._timers or self._timers[0][0] > target:
                    self._now = max(self._now, target)
                    break
                deadline, _, timer = heapq.heappop(self._timers)
                self._now = max(self._now, deadline)
            timer._fire()
        # Give threads woken by the fired timers a chance to run.
        time.sleep(0.001)