from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path


LOG_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._\-]{0,200}$", re.ASCII)


@dataclass(frozen=True)
class ValidationError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover
        return self.message


def validate_log_name(name: str) -> str:
    n = name.strip()
    if not LOG_NAME_RE.fullmatch(n):
        raise ValidationError(
            "Invalid log file name. Use a filename like 'app.log.jsonl' (no paths)."
        )
    return n


def resolve_log_path(log_dir: Path, log_name: str) -> Path:
    safe_name = validate_log_name(log_name)
    p = (log_dir / safe_name).resolve()
    if log_dir.resolve() not in p.parents:
        raise ValidationError("Log file must be inside the log directory")
    if not p.is_file():
        raise ValidationError(f"Log file not found: {safe_name}")
    return p
