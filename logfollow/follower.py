from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .gate import PauseGate
from .offsets import OffsetTracker
from .parsers import EntryParser, LogEntry, make_parser
from .security import ValidationError
from .signals import Signal
from .tail_loop import LoopState, TailLoop


ParserFactory = Callable[[Callable[[LogEntry], None]], EntryParser]


@dataclass
class FollowState:
    path: str = ""
    tracker: OffsetTracker = field(default_factory=OffsetTracker)
    file_size: int = 0
    # Kept across stop/start so a buffered partial record survives a restart.
    parser: Optional[EntryParser] = None


class LogFollower:
    """Follows one log file on a background thread.

    Consumer operations may be called from any thread. Notifications are
    emitted only on actual changes and never while the state lock is held, so
    a callback may call back into the follower.

    The follower starts paused: a started loop reads what is in the file once
    and then waits until it is resumed.
    """

    def __init__(
        self,
        path: str | Path = "",
        *,
        parser_factory: Optional[ParserFactory] = None,
        fmt: str = "jsonl",
        paused: bool = True,
        idle_delay: float = 1.0,
        wait_timeout: float = 1.0,
    ):
        self.error_occurred = Signal("error_occurred")
        self.path_changed = Signal("path_changed")
        self.paused_changed = Signal("paused_changed")
        self.file_size_changed = Signal("file_size_changed")
        self.new_entry = Signal("new_entry")
        self.cycle_end_reached = Signal("cycle_end_reached")

        self._parser_factory: ParserFactory = parser_factory or (lambda cb: make_parser(fmt, cb))
        self._idle_delay = idle_delay
        self._wait_timeout = wait_timeout
        self._gate = PauseGate(paused=paused)
        self._lock = self._gate.lock
        self._state = FollowState(path=str(path) if path else "")
        # Serializes start/stop/set_path among consumer threads.
        self._lifecycle = threading.RLock()
        self._loop: Optional[TailLoop] = None
        self._thread: Optional[threading.Thread] = None

    # -- properties ---------------------------------------------------------

    @property
    def path(self) -> str:
        with self._lock:
            return self._state.path

    @path.setter
    def path(self, value: str | Path) -> None:
        self.set_path(value)

    @property
    def file_size(self) -> int:
        with self._lock:
            return self._state.file_size

    @property
    def offset(self) -> Optional[int]:
        with self._lock:
            return self._state.tracker.offset

    @property
    def paused(self) -> bool:
        return self._gate.paused

    @paused.setter
    def paused(self, value: bool) -> None:
        self.set_paused(value)

    @property
    def running(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive()

    @property
    def state(self) -> LoopState:
        loop = self._loop
        return loop.state if loop is not None else LoopState.IDLE

    # -- operations ---------------------------------------------------------

    def set_path(self, path: str | Path) -> None:
        new_path = str(path) if path else ""
        with self._lock:
            if new_path == self._state.path:
                return
        while True:
            self.stop()
            with self._lifecycle:
                t = self._thread
                if t is not None and t.is_alive() and t is not threading.current_thread():
                    # Someone restarted the old path in between; stop again.
                    continue
                with self._lock:
                    self._state.path = new_path
                    # A fresh tracker rather than reset(): a loop that is
                    # still winding down keeps committing into its own one.
                    self._state.tracker = OffsetTracker()
                    self._state.file_size = 0
                    self._state.parser = None
                break
        self.path_changed.emit(new_path)

    def set_paused(self, paused: bool) -> None:
        if self._gate.set_paused(bool(paused)):
            self.paused_changed.emit(bool(paused))

    def pause(self) -> None:
        self.set_paused(True)

    def resume(self) -> None:
        self.set_paused(False)

    def start(self) -> bool:
        """Start following the configured path.

        Returns False if a loop is already running for this follower.
        """

        with self._lifecycle:
            if self.running:
                return False
            with self._lock:
                path = self._state.path
            if not path:
                raise ValidationError("No log file path configured")

            self._gate.rearm()
            if self._state.parser is None:
                self._state.parser = self._parser_factory(self.new_entry.emit)
            self._loop = TailLoop(
                Path(path),
                parser=self._state.parser,
                gate=self._gate,
                tracker=self._state.tracker,
                on_file_size=self._set_file_size,
                on_cycle_end=self.cycle_end_reached.emit,
                on_error=self.error_occurred.emit,
                idle_delay=self._idle_delay,
                wait_timeout=self._wait_timeout,
            )
            self._thread = threading.Thread(
                target=self._loop.run, name=f"logfollow-{Path(path).name}", daemon=True
            )
            self._thread.start()
            return True

    def stop(self) -> None:
        """Request the loop to stop and wait for the thread to exit.

        Called from a callback on the tail thread itself, this only requests
        the stop; the loop exits once the callback returns.
        """

        with self._lifecycle:
            t = self._thread
            if t is None:
                return
            self._gate.request_stop()
        if t is threading.current_thread():
            return
        # Joined outside the lifecycle lock: a callback still running on the
        # tail thread may itself call into the follower.
        t.join()
        with self._lifecycle:
            if self._thread is t:
                self._thread = None

    def close(self) -> None:
        self.stop()

    def __enter__(self) -> "LogFollower":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -- tail thread hooks --------------------------------------------------

    def _set_file_size(self, size: int) -> None:
        with self._lock:
            if size == self._state.file_size:
                return
            self._state.file_size = size
        self.file_size_changed.emit(size)
