from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Any, Callable, List, Tuple

import pytest

from logfollow.config import FollowConfig
from logfollow.follower import LogFollower


def make_jsonl_line(n: int, width: int) -> bytes:
    """A JSON line of exactly ``width`` bytes including the newline."""

    base = json.dumps({"n": n, "pad": ""})
    pad = width - 1 - len(base)
    assert pad >= 0, "width too small for entry"
    return (json.dumps({"n": n, "pad": "x" * pad}) + "\n").encode("utf-8")


class Recorder:
    """Collects every follower signal in emission order."""

    def __init__(self, follower: LogFollower):
        self.events: List[Tuple[str, Any]] = []
        self._cond = threading.Condition()
        follower.error_occurred.connect(lambda m: self._add("error", m))
        follower.path_changed.connect(lambda p: self._add("path", p))
        follower.paused_changed.connect(lambda p: self._add("paused", p))
        follower.file_size_changed.connect(lambda s: self._add("size", s))
        follower.new_entry.connect(lambda e: self._add("entry", e))
        follower.cycle_end_reached.connect(lambda o: self._add("cycle_end", o))

    def _add(self, kind: str, value: Any) -> None:
        with self._cond:
            self.events.append((kind, value))
            self._cond.notify_all()

    def of(self, kind: str) -> List[Any]:
        with self._cond:
            return [v for k, v in self.events if k == kind]

    def numbers(self) -> List[int]:
        return [e.record["n"] for e in self.of("entry")]

    def wait_for(self, predicate: Callable[["Recorder"], bool], timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        with self._cond:
            while not predicate(self):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(timeout=remaining)
            return True

    def wait_cycle_end(self, offset: int, timeout: float = 5.0) -> bool:
        return self.wait_for(lambda r: offset in [v for k, v in r.events if k == "cycle_end"], timeout)


@pytest.fixture
def make_follower():
    followers: List[LogFollower] = []

    def _make(path: Path | str = "", **kwargs: Any) -> Tuple[LogFollower, Recorder]:
        kwargs.setdefault("idle_delay", 0.02)
        kwargs.setdefault("wait_timeout", 0.05)
        follower = LogFollower(path, **kwargs)
        followers.append(follower)
        return follower, Recorder(follower)

    yield _make

    for f in followers:
        f.close()


@pytest.fixture
def jsonl_line():
    return make_jsonl_line


def build_config(tmp: Path, **overrides: Any) -> FollowConfig:
    values: dict = dict(
        project_root=tmp,
        log_dir=tmp / "logs",
        audit_dir=tmp / "audit",
        initial_path=None,
        log_format="jsonl",
        idle_delay_s=0.02,
        wait_timeout_s=0.05,
        start_paused=True,
        listen_host="127.0.0.1",
        listen_port=0,
        websocket_path="/ws",
        max_pending_entries=10_000,
    )
    values.update(overrides)
    return FollowConfig(**values)


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides: Any) -> FollowConfig:
        cfg = build_config(tmp_path, **overrides)
        cfg.log_dir.mkdir(parents=True, exist_ok=True)
        return cfg

    return _make
