# service/config_schema.py
"""
Service configuration: timezone + scheduled listing_watch jobs.

    {
      "timezone": "Asia/Jerusalem",
      "jobs": [
        {
          "id": "default-hourly",
          "module": "modules.listing_watch",      # optional, this is the default
          "trigger": {"cron": "0 * * * *"},        # exactly one of cron | interval | daily_time
          "kwargs": {"user": "default_user", "topic": "rentals"},
          "timeout_sec": 900,
          "summary": "hourly rentals scan"
        }
      ]
    }

Topics themselves live in the module's watch config (see
modules/listing_watch/lib/config.py), not here.
"""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_MODULE = "modules.listing_watch"
_TRIGGER_FIELDS = ("cron", "interval", "daily_time")
_DAILY_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


class ConfigError(ValueError):
    """Raised when the service config is invalid."""


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the service configuration.

    Resolution order:
      1) Explicit `path` argument
      2) os.environ['CONFIG_PATH']
      3) Empty default ({"jobs": []})

    Returns a normalized dict with "timezone" and "jobs" (each job has "id" and "module").
    """
    resolved = path or os.environ.get("CONFIG_PATH")
    if not resolved:
        logger.info("CONFIG_PATH not provided; using empty default config.")
        cfg: dict[str, Any] = {"jobs": []}
    else:
        cfg = _read_any(resolved)

    _apply_defaults(cfg)
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """Raise ConfigError on any problem. No prints, no sys.exit()."""
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a mapping.")

    jobs = cfg.get("jobs")
    if not isinstance(jobs, list):
        raise ConfigError("Missing required top-level 'jobs' list.")

    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    seen_ids: set[str] = set()
    for idx, job in enumerate(jobs):
        if not isinstance(job, dict):
            raise ConfigError(f"Job at index {idx} must be an object.")
        job_id = _derive_job_id(job, idx)
        if job_id in seen_ids:
            raise ConfigError(f"Duplicate job id '{job_id}'.")
        seen_ids.add(job_id)

        trigger = job.get("trigger")
        if not isinstance(trigger, dict):
            raise ConfigError(f"Job '{job_id}': 'trigger' object is required.")
        present = [k for k in _TRIGGER_FIELDS if k in trigger]
        if len(present) != 1:
            raise ConfigError(f"Job '{job_id}': exactly one trigger required among {', '.join(_TRIGGER_FIELDS)}.")

        kind = present[0]
        value = trigger[kind]
        if kind == "cron" and not isinstance(value, (str, dict)):
            raise ConfigError(f"Job '{job_id}': cron must be a crontab string or an object.")
        if kind == "interval":
            if not isinstance(value, dict) or not value:
                raise ConfigError(f"Job '{job_id}': interval must be an object of time fields.")
            for k, v in value.items():
                if k == "timezone":
                    continue
                _to_int(v, field=f"interval.{k}", job_id=job_id, allow_zero=True)
        if kind == "daily_time":
            times = value.get("time") if isinstance(value, dict) else value
            for t in [times] if isinstance(times, str) else (times or [None]):
                _validate_daily_time(t, job_id)

        if "kwargs" in job and not isinstance(job["kwargs"], dict):
            raise ConfigError(f"Job '{job_id}': 'kwargs' must be an object if provided.")
        if "timeout_sec" in job:
            _to_int(job["timeout_sec"], field="timeout_sec", job_id=job_id, allow_zero=False)
        for opt in ("summary", "module"):
            if opt in job and not isinstance(job[opt], str):
                raise ConfigError(f"Job '{job_id}': '{opt}' must be a string if provided.")


# ---- Helpers -----------------------------------------------------------------


def _apply_defaults(cfg: dict[str, Any]) -> None:
    if not isinstance(cfg.get("jobs"), list):
        cfg["jobs"] = []

    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    normalized: list[dict[str, Any]] = []
    for idx, job in enumerate(cfg["jobs"]):
        if not isinstance(job, dict):
            raise ConfigError(f"Job at index {idx} must be an object.")
        job_copy = dict(job)
        job_copy["id"] = _derive_job_id(job_copy, idx)
        job_copy.setdefault("module", DEFAULT_MODULE)
        normalized.append(job_copy)
    cfg["jobs"] = normalized


def _derive_job_id(job: dict[str, Any], idx: int) -> str:
    for key in ("id", "name"):
        v = job.get(key)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return f"job_{idx}"


def _validate_daily_time(value: Any, job_id: str) -> None:
    m = _DAILY_TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not m:
        raise ConfigError(f"Job '{job_id}': daily_time must be 'HH:MM' or 'HH:MM:SS' (got {value!r}).")
    hour, minute, second = int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59 and 0 <= second <= 59):
        raise ConfigError(f"Job '{job_id}': daily_time out of range (00:00..23:59).")


def _to_int(value: Any, *, field: str, job_id: str, allow_zero: bool) -> int:
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Job '{job_id}': '{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"Job '{job_id}': '{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _read_any(path: str) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    try:
        if path.lower().endswith((".yml", ".yaml")):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid config in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be a mapping.")
    return data
