"""Simulate DONT_HAVE responses for peers that take too long to answer.

The timeout is derived from latency: a default is used until the peer has
been pinged, and once responses arrive their latency takes over. Durations
are expressed in seconds.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol

from .clock import Clock, MockClock, Timer

# Used when a peer does not support DONT_HAVE or takes too long to respond:
# if a want-block gets no answer within this time, assume the peer lacks it.
DONT_HAVE_TIMEOUT = 5.0

# The longest we expect a peer to take to process a want and start replying.
MAX_EXPECTED_WANT_PROCESS_TIME = 2.0

# The largest timeout allowed, whatever the latency.
MAX_TIMEOUT = DONT_HAVE_TIMEOUT + MAX_EXPECTED_WANT_PROCESS_TIME

# Multiplied by the average ping time to bound the expected response time.
PING_LATENCY_MULTIPLIER = 3

# Alpha of the message latency moving average.
MESSAGE_LATENCY_ALPHA = 0.5

# The timeout is this multiple of the message latency, as a margin for error.
MESSAGE_LATENCY_MULTIPLIER = 2


@dataclass(frozen=True)
class PingResult:
    """The outcome of pinging a peer."""

    rtt: float = 0.0
    error: Optional[BaseException] = None


class PeerConnection(Protocol):
    """A connection to a peer that can be pinged for latency."""

    def ping(self, timeout: float) -> PingResult:
        """Ping the peer, waiting at most ``timeout`` seconds."""
        ...

    def latency(self) -> float:
        """Return the average latency of all pings so far."""
        ...


@dataclass
class LatencyEwma:
    """Exponentially weighted moving average of message latency."""

    alpha: float
    samples: int = 0
    latency: float = 0.0

    def update(self, elapsed: float) -> None:
        """Fold a new latency sample into the average."""
        self.samples += 1
        # Start with alpha = 1 / samples, clamped once enough samples exist.
        alpha = max(1.0 / self.samples, self.alpha)
        self.latency = elapsed * alpha + (1 - alpha) * self.latency


@dataclass(eq=False)
class _PendingWant:
    cid: str
    sent: float
    active: bool = True


class DontHaveTimeoutManager:
    """Calls ``on_timeout`` with the keys a peer failed to answer in time."""

    def __init__(
        self,
        peer_conn: PeerConnection,
        on_timeout: Callable[[list[str]], object],
        clock: Clock | MockClock | None = None,
        default_timeout: float = DONT_HAVE_TIMEOUT,
        max_timeout: float = MAX_TIMEOUT,
        ping_latency_multiplier: int = PING_LATENCY_MULTIPLIER,
        message_latency_multiplier: int = MESSAGE_LATENCY_MULTIPLIER,
        max_expected_want_process_time: float = MAX_EXPECTED_WANT_PROCESS_TIME,
    ) -> None:
        self._peer_conn = peer_conn
        self._on_timeout = on_timeout
        self._clock = clock if clock is not None else Clock()
        self._default_timeout = default_timeout
        self._max_timeout = max_timeout
        self._ping_latency_multiplier = ping_latency_multiplier
        self._message_latency_multiplier = message_latency_multiplier
        self._max_expected_want_process_time = max_expected_want_process_time

        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._started = False
        self._active_wants: dict[str, _PendingWant] = {}
        self._want_queue: deque[_PendingWant] = deque()
        self._timeout = default_timeout
        self._message_latency = LatencyEwma(alpha=MESSAGE_LATENCY_ALPHA)
        self._timer: Optional[Timer] = None

    def start(self) -> None:
        """Start measuring latency. Repeated calls, or calls after shutdown, do nothing."""
        with self._lock:
            if self._started or self._stopped.is_set():
                return
            self._started = True

            # With a latency measure already at hand, derive the timeout from it.
            latency = self._peer_conn.latency()
            if latency > 0:
                self._timeout = self._timeout_from_ping_latency(latency)
                return

        threading.Thread(
            target=self._measure_ping_latency, name="dont-have-ping", daemon=True
        ).start()

    def shutdown(self) -> None:
        """Stop the manager for good; no timeouts fire afterwards."""
        self._stopped.set()
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()

    def update_message_latency(self, elapsed: float) -> None:
        """Record the time between sending a request and receiving its response."""
        expired: list[str] = []
        with self._lock:
            self._message_latency.update(elapsed)
            old_timeout = self._timeout
            self._timeout = self._timeout_from_message_latency()
            if self._timeout < old_timeout:
                expired = self._check_for_timeouts()
        self._fire_timeout(expired)

    def add_pending(self, keys: Iterable[str]) -> None:
        """Track ``keys`` as awaiting a response; they expire unless cancelled."""
        keys = list(keys)
        if not keys:
            return

        start = self._clock.now()
        expired: list[str] = []
        with self._lock:
            queue_was_empty = not self._active_wants
            for key in keys:
                if key not in self._active_wants:
                    pending = _PendingWant(key, start)
                    self._active_wants[key] = pending
                    self._want_queue.append(pending)

            # A non-empty queue already has a check scheduled.
            if queue_was_empty:
                expired = self._check_for_timeouts()
        self._fire_timeout(expired)

    def cancel_pending(self, keys: Iterable[str]) -> None:
        """Stop tracking ``keys``; called when a response arrives for them."""
        with self._lock:
            for key in keys:
                pending = self._active_wants.pop(key, None)
                if pending is not None:
                    pending.active = False

    def _measure_ping_latency(self) -> None:
        result = self._peer_conn.ping(self._default_timeout)
        if result.error is not None or self._stopped.is_set():
            # Keep the default timeout.
            return

        latency = self._peer_conn.latency()
        with self._lock:
            # A response already arrived, so message latency sets the timeout.
            if self._message_latency.samples > 0:
                return
            self._timeout = self._timeout_from_ping_latency(latency)
            expired = self._check_for_timeouts()
        self._fire_timeout(expired)

    def _on_timer(self) -> None:
        with self._lock:
            expired = self._check_for_timeouts()
        self._fire_timeout(expired)

    def _check_for_timeouts(self) -> list[str]:
        """Drop expired and cancelled wants and reschedule; call under the lock."""
        if not self._want_queue:
            return []

        now = self._clock.now()
        expired: list[str] = []
        while self._want_queue:
            pending = self._want_queue[0]
            if pending.active:
                # The queue is ordered oldest first, so stop at the first live want.
                if pending.sent + self._timeout > now:
                    break
                expired.append(pending.cid)
                del self._active_wants[pending.cid]
            self._want_queue.popleft()

        if self._want_queue and not self._stopped.is_set():
            deadline = self._want_queue[0].sent + self._timeout
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._clock.call_later(max(0.0, deadline - now), self._on_timer)

        return expired

    def _fire_timeout(self, expired: list[str]) -> None:
        if not expired or self._stopped.is_set():
            return
        self._on_timeout(expired)

    def _timeout_from_ping_latency(self, latency: float) -> float:
        timeout = self._max_expected_want_process_time + self._ping_latency_multiplier * latency
        return min(timeout, self._max_timeout)

    def _timeout_from_message_latency(self) -> float:
        timeout = self._message_latency.latency * self._message_latency_multiplier
        return min(timeout, self._max_timeout)