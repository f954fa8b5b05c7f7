from __future__ import annotations

import logging
from typing import Any

# Prefer the service's JSONL writers; fall back to stdlib logging when the
# module is used without the service package (e.g. from a notebook).
_logging_backend = None
try:
    from service import logging_utils as _svc_logging  # type: ignore

    _logging_backend = _svc_logging
except ImportError:
    _logging_backend = None

_REDACT_KEYS = {"cookie", "cookies", "authorization", "token", "password", "secret"}


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """Shallow copy with secret-ish top-level keys masked."""
    out = dict(record)
    for k in list(out):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith("_secret"):
            out[k] = "***REDACTED***"
    return out


def activity(record: dict[str, Any]) -> None:
    """Write a structured activity record (JSONL if available, else std logging)."""
    payload = _redact_record(record)
    if _logging_backend is not None:
        try:
            _logging_backend.write_activity_log(payload)
            return
        except OSError:
            logging.getLogger(__name__).debug("activity log write failed", exc_info=True)
    logging.getLogger("listing_watch.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """Write a structured error record (JSONL if available, else std logging)."""
    payload = _redact_record(record)
    if _logging_backend is not None:
        try:
            _logging_backend.write_error_log(payload)
            return
        except OSError:
            logging.getLogger(__name__).debug("error log write failed", exc_info=True)
    logging.getLogger("listing_watch.error").error(payload)
