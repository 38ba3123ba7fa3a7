from __future__ import annotations

import threading
import time
from typing import Optional


class PauseGate:
    """Pause/resume/stop handshake between the consumer and the tail thread.

    All state lives behind one condition variable. Its lock is also the lock
    guarding the follower state, so a single mutual exclusion domain covers
    path, offsets, pause flag and stop latch.
    """

    def __init__(self, *, paused: bool = True, lock: Optional[threading.Lock] = None):
        self.lock = lock or threading.Lock()
        self._cond = threading.Condition(self.lock)
        self._paused = paused
        self._stop_requested = False

    @property
    def paused(self) -> bool:
        with self.lock:
            return self._paused

    @property
    def stop_requested(self) -> bool:
        with self.lock:
            return self._stop_requested

    def set_paused(self, paused: bool) -> bool:
        """Returns True when the value actually changed.

        The caller emits its notification after this returns, i.e. outside
        the lock.
        """

        with self._cond:
            if paused == self._paused:
                return False
            self._paused = paused
            if not paused:
                self._cond.notify_all()
            return True

    def request_stop(self) -> None:
        with self._cond:
            self._stop_requested = True
            self._cond.notify_all()

    def rearm(self) -> None:
        # Only valid between loop lifetimes (no tail thread alive).
        with self._cond:
            self._stop_requested = False

    def wait_while_paused(self, timeout_hint: float = 1.0) -> bool:
        """Block while paused and not stopped. Returns True if it blocked.

        The timeout only bounds each individual wait; the predicate is
        re-checked after every wake, so spurious wakeups and expiries do not
        end the wait on their own.
        """

        blocked = False
        with self._cond:
            while self._paused and not self._stop_requested:
                blocked = True
                self._cond.wait(timeout=timeout_hint)
        return blocked

    def idle(self, delay: float) -> bool:
        """Sleep between cycles, cut short by a stop request.

        Returns True if stop was requested.
        """

        deadline = time.monotonic() + delay
        with self._cond:
            while not self._stop_requested:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                self._cond.wait(timeout=remaining)
            return self._stop_requested
