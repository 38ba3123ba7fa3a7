from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

from .audit import AuditLogger
from .config import FollowConfig
from .follower import LogFollower


@dataclass
class ViewerState:
    cfg: FollowConfig
    audit: AuditLogger
    follower: LogFollower
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    last_entry_ts: Optional[str] = None
    last_cycle_ts: Optional[str] = None
    last_offset: int = 0
    last_error: Optional[str] = None
    # Entries not broadcast because too many were already pending.
    entries_dropped: int = 0

    # Monotonic arrival times, for rolling rates.
    _entry_times: Deque[float] = field(default_factory=lambda: deque(maxlen=200_000), repr=False)

    _entries_total: int = 0
    _cycles_total: int = 0

    def clear(self) -> None:
        self.last_entry_ts = None
        self.last_cycle_ts = None
        self.last_offset = 0
        self.last_error = None
        self.entries_dropped = 0
        self._entry_times.clear()
        self._entries_total = 0
        self._cycles_total = 0

    def record_entry(self, *, now: float | None = None) -> None:
        self._entries_total += 1
        self._entry_times.append(time.monotonic() if now is None else now)
        self.last_entry_ts = datetime.now(timezone.utc).isoformat()

    def record_cycle(self, offset: int) -> None:
        self._cycles_total += 1
        self.last_offset = int(offset)
        self.last_cycle_ts = datetime.now(timezone.utc).isoformat()

    def record_error(self, message: str) -> None:
        self.last_error = message
        self.audit.log_error(path=self.follower.path, message=message)

    def follower_snapshot(self) -> Dict[str, Any]:
        f = self.follower
        return {
            "path": f.path,
            "paused": f.paused,
            "running": f.running,
            "state": f.state.value,
            "file_size": f.file_size,
            "offset": f.offset,
        }

    def stats_snapshot(self, *, now: float | None = None, window_s: float = 60.0) -> Dict[str, Any]:
        """Totals plus the entry rate over a trailing window."""

        if now is None:
            now = time.monotonic()
        cutoff = float(now) - float(window_s)
        while self._entry_times and self._entry_times[0] < cutoff:
            self._entry_times.popleft()

        entries_last_window = len(self._entry_times)
        denom = max(1.0, float(window_s))
        return {
            "window_s": float(window_s),
            "entries_total": int(self._entries_total),
            "cycles_total": int(self._cycles_total),
            "entries_last_window": int(entries_last_window),
            "entries_per_second": float(entries_last_window) / denom,
            "last_offset": int(self.last_offset),
            "last_entry_ts": self.last_entry_ts,
            "last_cycle_ts": self.last_cycle_ts,
            "last_error": self.last_error,
            "entries_dropped": int(self.entries_dropped),
        }
