from __future__ import annotations

import threading
from typing import Any, Callable, List


class Signal:
    """Minimal observer list.

    Callbacks run synchronously on whichever thread calls ``emit``; for the
    follower that is the tail thread for entry/size/cycle events and the
    caller's thread for path/pause events.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._callbacks: List[Callable[..., Any]] = []

    def connect(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        with self._lock:
            self._callbacks.append(callback)
        return callback

    def disconnect(self, callback: Callable[..., Any]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

    def emit(self, *args: Any) -> None:
        # Snapshot so callbacks can connect/disconnect while being called.
        with self._lock:
            callbacks = list(self._callbacks)
        for cb in callbacks:
            cb(*args)

    def __len__(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def __repr__(self) -> str:  # pragma: no cover
        return f"Signal({self.name!r}, receivers={len(self)})"
