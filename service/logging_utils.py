# service/logging_utils.py
from __future__ import annotations

import datetime as _dt
import json
import os
import socket
from collections.abc import Iterable
from typing import Any

# ---- Configuration (env-driven, read per call so tests can redirect) --------
#   LOG_DIR               base directory for JSONL logs (default ./local/logs)
#   ACTIVITY_LOG_PREFIX   file prefix for activity records (default "activity")
#   ERROR_LOG_PREFIX      file prefix for error records (default "error")

# Case-insensitive substrings; any key containing one has its value masked.
_DEFAULT_REDACT_KEYS = frozenset({
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "cookie",
})

_HOSTNAME = socket.gethostname()
_PID = os.getpid()


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Append one structured activity record to today's activity JSONL file.
    Never mutates `record`. Raises OSError/TypeError on unrecoverable failures.
    """
    _append_jsonl(log_path_for_today(os.getenv("ACTIVITY_LOG_PREFIX", "activity")), record)


def write_error_log(record: dict[str, Any]) -> None:
    """Same as write_activity_log but into the error stream."""
    _append_jsonl(log_path_for_today(os.getenv("ERROR_LOG_PREFIX", "error")), record)


def log_path_for_today(prefix: str) -> str:
    """<LOG_DIR>/<prefix>-YYYY-MM-DD.jsonl"""
    log_dir = os.getenv("LOG_DIR", os.path.join("local", "logs"))
    return os.path.join(log_dir, f"{prefix}-{_dt.date.today().isoformat()}.jsonl")


def redact(value: Any, keys: Iterable[str] = _DEFAULT_REDACT_KEYS) -> Any:
    """Deep copy of dict/list/tuple structures with secret-looking keys masked."""
    patterns = tuple(k.lower() for k in keys)
    if isinstance(value, dict):
        out: dict[Any, Any] = {}
        for k, v in value.items():
            if isinstance(k, str) and any(p in k.lower() for p in patterns):
                out[k] = "***REDACTED***"
            else:
                out[k] = redact(v, patterns)
        return out
    if isinstance(value, list):
        return [redact(v, patterns) for v in value]
    if isinstance(value, tuple):
        return tuple(redact(v, patterns) for v in value)
    return value


# ---- Internal helpers --------------------------------------------------------


def _append_jsonl(path: str, record: dict[str, Any]) -> None:
    payload = redact(record)
    payload = {
        "ts": _dt.datetime.now(_dt.timezone.utc).isoformat(timespec="seconds"),
        **payload,
        "_meta": {"host": _HOSTNAME, "pid": _PID},
    }
    # Serialize before touching the file so a bad record never leaves half a line.
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
    try:
        # One write with O_APPEND keeps concurrent appenders line-atomic on POSIX.
        os.write(fd, data)
    finally:
        os.close(fd)
