from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class AuditEvent:
    ts: str
    kind: str
    command: str
    ok: bool
    detail: Dict[str, Any]
    client: Optional[str] = None


class AuditLogger:
    """Append-only JSONL record of client commands and follower errors."""

    def __init__(self, log_dir: Path):
        self._log_dir = log_dir
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._path = self._log_dir / "commands.jsonl"
        # Errors arrive on the tail thread, commands on the event loop.
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _write(self, evt: AuditEvent) -> None:
        with self._lock, self._path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(evt.__dict__, ensure_ascii=False) + "\n")

    def log_command(
        self,
        *,
        command: str,
        ok: bool,
        detail: Dict[str, Any] | None = None,
        client: str | None = None,
    ) -> None:
        self._write(
            AuditEvent(
                ts=datetime.now(timezone.utc).isoformat(),
                kind="command",
                command=command,
                ok=ok,
                detail=detail or {},
                client=client,
            )
        )

    def log_error(self, *, path: str, message: str) -> None:
        self._write(
            AuditEvent(
                ts=datetime.now(timezone.utc).isoformat(),
                kind="follower_error",
                command="",
                ok=False,
                detail={"path": path, "message": message},
            )
        )
