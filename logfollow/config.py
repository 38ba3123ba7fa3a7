from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


@dataclass(frozen=True)
class FollowConfig:
    project_root: Path
    log_dir: Path
    audit_dir: Path
    initial_path: Path | None

    log_format: str
    idle_delay_s: float
    wait_timeout_s: float
    start_paused: bool

    listen_host: str
    listen_port: int
    websocket_path: str
    max_pending_entries: int

    @staticmethod
    def from_env(project_root: Path | None = None) -> "FollowConfig":
        root = project_root or Path(__file__).resolve().parents[1]
        log_dir = Path(os.getenv("LOGFOLLOW_LOG_DIR", str(root / "logs")))
        audit_dir = Path(os.getenv("LOGFOLLOW_AUDIT_DIR", str(root / "follow_logs")))

        initial_env = os.getenv("LOGFOLLOW_PATH", "").strip()
        initial_path = Path(initial_env) if initial_env else None

        log_format = os.getenv("LOGFOLLOW_FORMAT", "jsonl").strip().lower() or "jsonl"
        # Only responsiveness depends on these two, any positive value is correct.
        idle_delay_s = _env_positive_float("LOGFOLLOW_IDLE_DELAY_S", 1.0)
        wait_timeout_s = _env_positive_float("LOGFOLLOW_WAIT_TIMEOUT_S", 1.0)
        start_paused = _env_bool("LOGFOLLOW_START_PAUSED", False)

        listen_host = os.getenv("LOGFOLLOW_LISTEN_HOST", "127.0.0.1")
        listen_port = int(os.getenv("LOGFOLLOW_LISTEN_PORT", "8766"))
        websocket_path = os.getenv("LOGFOLLOW_WS_PATH", "/ws")
        max_pending_entries = _env_positive_int("LOGFOLLOW_MAX_PENDING_ENTRIES", 10_000)

        return FollowConfig(
            project_root=root,
            log_dir=log_dir,
            audit_dir=audit_dir,
            initial_path=initial_path,
            log_format=log_format,
            idle_delay_s=idle_delay_s,
            wait_timeout_s=wait_timeout_s,
            start_paused=start_paused,
            listen_host=listen_host,
            listen_port=listen_port,
            websocket_path=websocket_path,
            max_pending_entries=max_pending_entries,
        )
