from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


# Offset value meaning "nothing read yet, start from the beginning".
UNSET: Optional[int] = None


def seek_position(previous: Optional[int], size: int) -> int:
    """Where the next cycle starts reading.

    A file that is now smaller than what we already consumed was truncated or
    rotated, so it is read again from the start.
    """

    if previous is UNSET or previous > size:
        return 0
    return previous


@dataclass
class OffsetTracker:
    offset: Optional[int] = UNSET
    last_size: int = 0

    def begin_cycle(self, size: int) -> Tuple[int, bool]:
        if size < 0:
            raise ValueError(f"file size must be >= 0, got {size}")
        truncated = self.offset is not UNSET and (self.offset > size or size < self.last_size)
        seek = 0 if truncated else seek_position(self.offset, size)
        self.last_size = size
        return seek, truncated

    def commit(self, size: int) -> int:
        # The size measured when the cycle began, not after parsing: a writer
        # may have appended meanwhile and those bytes belong to the next cycle.
        if size < 0:
            raise ValueError(f"offset must be >= 0, got {size}")
        self.offset = size
        return size

    def reset(self) -> None:
        self.offset = UNSET
        self.last_size = 0
