from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Callable, Dict, Optional, Protocol

from .security import ValidationError


@dataclass(frozen=True)
class LogEntry:
    offset: int
    record: Dict[str, Any]
    raw: str = field(default="", compare=False)


EntryCallback = Callable[[LogEntry], None]


class EntryParser(Protocol):
    """What the tail loop needs from a parser.

    ``consume`` reads the stream to its end and calls the entry callback once
    per complete record, in file order. ``reset`` is optional and drops any
    buffered partial record (called after a truncation). ``handled_offset``
    is optional too: where to resume if a cycle fails midway.
    """

    def consume(self, stream: BinaryIO, *, base_offset: int = 0) -> None: ...


class LineParser:
    """Base for newline delimited formats.

    A final line without a trailing newline is kept until the next
    ``consume`` call, since the writer may still be in the middle of it.
    """

    def __init__(self, on_entry: EntryCallback, *, encoding: str = "utf-8"):
        self.on_entry = on_entry
        self.encoding = encoding
        self._partial = b""
        self._partial_offset = 0
        self._handled = 0

    def reset(self) -> None:
        self._partial = b""
        self._partial_offset = 0
        self._handled = 0

    @property
    def pending_bytes(self) -> int:
        return len(self._partial)

    @property
    def handled_offset(self) -> int:
        """First byte not yet turned into an entry (or skipped).

        Resuming a fresh read here after ``reset()`` neither repeats nor
        loses a record.
        """

        return self._partial_offset if self._partial else self._handled

    def consume(self, stream: BinaryIO, *, base_offset: int = 0) -> None:
        pos = base_offset
        self._handled = base_offset
        for chunk in stream:
            if not chunk.endswith(b"\n"):
                if not self._partial:
                    self._partial_offset = pos
                self._partial += chunk
                pos += len(chunk)
                continue
            if self._partial:
                line, start = self._partial + chunk, self._partial_offset
                self._partial = b""
            else:
                line, start = chunk, pos
            pos += len(chunk)
            # Counted as handled before the callback runs: a record whose
            # consumer raised is not handed out again.
            self._handled = pos
            text = line.rstrip(b"\r\n").decode(self.encoding, errors="replace")
            entry = self.parse_line(text, start)
            if entry is not None:
                self.on_entry(entry)

    def parse_line(self, line: str, offset: int) -> Optional[LogEntry]:
        raise NotImplementedError


class JsonLinesParser(LineParser):
    def parse_line(self, line: str, offset: int) -> Optional[LogEntry]:
        line = line.strip()
        if not line or line.startswith("#"):
            return None
        try:
            rec = json.loads(line)
        except json.JSONDecodeError:
            return None
        if not isinstance(rec, dict):
            return None
        return LogEntry(offset=offset, record=rec, raw=line)


class PlainLineParser(LineParser):
    def parse_line(self, line: str, offset: int) -> Optional[LogEntry]:
        if not line.strip():
            return None
        return LogEntry(offset=offset, record={"line": line}, raw=line)


PARSERS = {
    "jsonl": JsonLinesParser,
    "text": PlainLineParser,
}


def make_parser(fmt: str, on_entry: EntryCallback) -> LineParser:
    cls = PARSERS.get(fmt.strip().lower())
    if cls is None:
        available = ", ".join(sorted(PARSERS))
        raise ValidationError(f"Unknown log format: '{fmt}' (available: {available})")
    return cls(on_entry)
