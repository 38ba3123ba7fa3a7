from __future__ import annotations

import io
import os
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable

from .gate import PauseGate
from .offsets import OffsetTracker
from .parsers import EntryParser


class LoopState(str, Enum):
    IDLE = "idle"
    OPENING = "opening"
    READING = "reading"
    SLEEPING = "sleeping"
    WAITING_PAUSED = "waiting_paused"
    STOPPED = "stopped"


class _WindowReader(io.RawIOBase):
    """Raw stream over an open file that ends after ``length`` bytes.

    Bytes appended while the parser runs stay invisible to this cycle.
    """

    def __init__(self, fp: BinaryIO, length: int):
        self._fp = fp
        self._remaining = max(0, length)

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self._remaining <= 0:
            return 0
        view = memoryview(b)[: min(len(b), self._remaining)]
        n = self._fp.readinto(view) or 0
        self._remaining -= n
        return n


class TailLoop:
    """One follow session on the tail thread.

    Each cycle opens the file, reads from the tracked offset up to the size
    measured when the cycle began, hands those bytes to the parser and closes
    the file again. No handle is held across the sleep/pause boundary so the
    file can be rotated or truncated between cycles.
    """

    def __init__(
        self,
        path: Path,
        *,
        parser: EntryParser,
        gate: PauseGate,
        tracker: OffsetTracker,
        on_file_size: Callable[[int], None],
        on_cycle_end: Callable[[int], None],
        on_error: Callable[[str], None],
        idle_delay: float = 1.0,
        wait_timeout: float = 1.0,
    ):
        self.path = path
        self.state = LoopState.IDLE
        self.cycles = 0
        self.idle_delay = idle_delay
        self.wait_timeout = wait_timeout
        self._parser = parser
        self._gate = gate
        self._tracker = tracker
        self._on_file_size = on_file_size
        self._on_cycle_end = on_cycle_end
        self._on_error = on_error

    def run(self) -> None:
        try:
            while not self._gate.stop_requested:
                if not self._run_cycle():
                    break
                if self._gate.stop_requested:
                    break
                self._between_cycles()
        except Exception as e:
            # Nothing may escape the thread: report it and end the loop.
            self._gate.request_stop()
            failed_reading = self.state == LoopState.READING
            self.state = LoopState.STOPPED
            if failed_reading:
                self._keep_handled_position()
            print(f"[Follower] Tail loop for {self.path} failed: {e!r}")
            self._report(f"Error while following {self.path}: {e}")
        finally:
            self.state = LoopState.STOPPED

    def _run_cycle(self) -> bool:
        self.state = LoopState.OPENING
        try:
            fp = open(self.path, "rb")
        except OSError as e:
            # A path that cannot be opened will not fix itself; the consumer
            # has to reconfigure.
            self._gate.request_stop()
            self.state = LoopState.STOPPED
            print(f"[Follower] Can't open {self.path}: {e.strerror or e}")
            self._report(f"Can't open file: {self.path}")
            return False

        with fp:
            fp.seek(0, os.SEEK_END)
            size = fp.tell()
            self._on_file_size(size)

            with self._gate.lock:
                seek, truncated = self._tracker.begin_cycle(size)
            if truncated:
                self._reset_parser()

            self.state = LoopState.READING
            fp.seek(seek)
            stream = io.BufferedReader(_WindowReader(fp, size - seek))
            self._parser.consume(stream, base_offset=seek)

            with self._gate.lock:
                offset = self._tracker.commit(size)

        self.cycles += 1
        self._on_cycle_end(offset)
        return True

    def _reset_parser(self) -> None:
        reset = getattr(self._parser, "reset", None)
        if reset is not None:
            reset()

    def _keep_handled_position(self) -> None:
        # Entries already handed out this cycle must not come again after a
        # restart: resume right after them and re-read whatever follows.
        handled = getattr(self._parser, "handled_offset", None)
        if handled is None:
            return
        with self._gate.lock:
            self._tracker.commit(handled)
        self._reset_parser()

    def _report(self, message: str) -> None:
        try:
            self._on_error(message)
        except Exception as e:
            print(f"[Follower] error_occurred observer failed: {e!r}")

    def _between_cycles(self) -> None:
        if not self._gate.paused:
            self.state = LoopState.SLEEPING
            if self._gate.idle(self.idle_delay):
                return
        # Also catches a pause requested during the idle delay, so no cycle
        # runs after the consumer paused.
        if self._gate.paused:
            self.state = LoopState.WAITING_PAUSED
            self._gate.wait_while_paused(self.wait_timeout)
