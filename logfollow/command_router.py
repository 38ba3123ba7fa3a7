from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List

from .security import ValidationError, resolve_log_path
from .state import ViewerState


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    messages: List[str]
    data: Dict[str, Any] | None = None


class CommandRouter:
    def __init__(self, state: ViewerState):
        self._state = state

    def _help(self) -> CommandResult:
        return CommandResult(
            ok=True,
            messages=[
                "═══════════════════════════════════════════════════════════",
                "  LOG FOLLOWER - COMMANDS",
                "═══════════════════════════════════════════════════════════",
                "",
                "SYSTEM:",
                "  /help              Show this help",
                "  /status            Follower status",
                "  /stats             Statistics",
                "  /clear             Reset counters",
                "",
                "FOLLOWING:",
                "  /files             List log files",
                "  /open <file>       Follow a file from the log directory",
                "  /start             Start following the current file",
                "  /stop              Stop following",
                "  /pause             Pause after the current cycle",
                "  /resume            Resume following",
                "═══════════════════════════════════════════════════════════",
            ],
        )

    def _stats(self) -> CommandResult:
        stats = self._state.stats_snapshot(window_s=60.0)
        return CommandResult(
            ok=True,
            messages=[
                "═══════════════════════════════════════════════════════════",
                "  STATISTICS",
                "═══════════════════════════════════════════════════════════",
                f"  Entries:          {stats['entries_total']:,}",
                f"  Cycles:           {stats['cycles_total']:,}",
                f"  Entries/s (1m):   {stats['entries_per_second']:.2f}",
                f"  Offset:           {stats['last_offset']:,}",
                "═══════════════════════════════════════════════════════════",
            ],
            data=stats,
        )

    def _status(self) -> CommandResult:
        payload = {
            "started_at": self._state.started_at,
            "follower": self._state.follower_snapshot(),
            "last_error": self._state.last_error,
        }
        return CommandResult(ok=True, messages=[json.dumps(payload, indent=2)], data=payload)

    def _files(self) -> CommandResult:
        log_dir = self._state.cfg.log_dir
        files = sorted(p for p in log_dir.glob("*") if p.is_file()) if log_dir.is_dir() else []
        if not files:
            return CommandResult(ok=False, messages=[f"No log files in {log_dir}."])
        msgs = ["Available log files:", ""]
        for p in files:
            size_kb = p.stat().st_size / 1024
            msgs.append(f"  {p.name} ({size_kb:.1f} KB)")
        msgs.append("")
        msgs.append("Usage: /open <filename>")
        return CommandResult(ok=True, messages=msgs)

    def dispatch(self, command: str, *, client: str | None = None) -> CommandResult:
        cmdline = command.strip()
        if not cmdline.startswith("/"):
            return CommandResult(ok=False, messages=["Commands must start with '/'"])

        parts = cmdline.split()
        head = parts[0].lower()
        args = parts[1:]
        follower = self._state.follower

        try:
            if head == "/help":
                res = self._help()
            elif head == "/status":
                res = self._status()
            elif head == "/stats":
                res = self._stats()
            elif head == "/clear":
                self._state.clear()
                res = CommandResult(ok=True, messages=["Counters cleared."])
            elif head == "/files":
                res = self._files()
            elif head == "/open":
                if not args:
                    raise ValidationError("Usage: /open <filename>")
                path = resolve_log_path(self._state.cfg.log_dir, args[0])
                follower.set_path(path)
                follower.start()
                res = CommandResult(
                    ok=True,
                    messages=[f"Following {path.name}"],
                    data={"action": "open", "path": str(path)},
                )
            elif head == "/start":
                if follower.start():
                    res = CommandResult(ok=True, messages=[f"Following {follower.path}"])
                else:
                    res = CommandResult(ok=True, messages=["Already following."])
            elif head == "/stop":
                follower.stop()
                res = CommandResult(ok=True, messages=["Stopped."])
            elif head == "/pause":
                follower.pause()
                res = CommandResult(ok=True, messages=["Paused."])
            elif head == "/resume":
                follower.resume()
                res = CommandResult(ok=True, messages=["Resumed."])
            else:
                res = CommandResult(ok=False, messages=[f"Unknown command: {head}"])

            self._state.audit.log_command(command=cmdline, ok=res.ok, detail={"head": head}, client=client)
            return res
        except ValidationError as ve:
            self._state.audit.log_command(command=cmdline, ok=False, detail={"error": str(ve)}, client=client)
            return CommandResult(ok=False, messages=[str(ve)])
        except Exception as e:
            self._state.audit.log_command(command=cmdline, ok=False, detail={"error": repr(e)}, client=client)
            return CommandResult(ok=False, messages=["Internal error."])
