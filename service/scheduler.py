# service/scheduler.py
from __future__ import annotations

import logging
import threading
import time as _time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from . import config_schema, runner
from .logging_utils import write_activity_log

LOG = logging.getLogger(__name__)

_INTERVAL_FIELDS = ("weeks", "days", "hours", "minutes", "seconds")


# ---- Internal structures ----------------------------------------------------


@dataclass(frozen=True, slots=True)
class JobSpec:
    id: str
    trigger: Any  # apscheduler.triggers.base.BaseTrigger
    module: str
    kwargs: dict[str, Any]
    timeout_sec: int | None
    summary: str | None


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """Small façade around APScheduler so the CLI can manage lifecycle cleanly."""

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self._scheduler = scheduler
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            # In-flight runs finish on their worker threads.
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()

    def join(self, timeout: float | None = None) -> bool:
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self._scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def start(config_path: str | None = None) -> SchedulerController:
    """
    Load the service config, register one APScheduler job per configured job
    and start the background scheduler.

    Each job has max_instances=1 and coalesce=True: a watch run never overlaps
    itself, so the same topic is never reconciled concurrently.
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)
    tz = _resolve_timezone(cfg.get("timezone"))

    scheduler = BackgroundScheduler(
        timezone=tz,
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(4)},
        jobstores={"default": MemoryJobStore()},
    )

    for raw in cfg["jobs"]:
        spec = make_job_spec(raw, tz=str(tz))
        _add_job(scheduler, spec)

    scheduler.start()
    LOG.info("Scheduler started with %d job(s).", len(scheduler.get_jobs()))
    return SchedulerController(scheduler)


def make_job_spec(raw: dict[str, Any], *, tz: str | None) -> JobSpec:
    return JobSpec(
        id=str(raw["id"]),
        trigger=build_trigger(raw["trigger"], tz),
        module=str(raw.get("module") or runner.DEFAULT_MODULE),
        kwargs=dict(raw.get("kwargs") or {}),
        timeout_sec=int(raw["timeout_sec"]) if raw.get("timeout_sec") else None,
        summary=raw.get("summary"),
    )


def build_trigger(trig_def: dict[str, Any], tz: str | None) -> Any:
    """
    Build an APScheduler trigger from a dict.

    Supported shapes:
      {"interval": {weeks|days|hours|minutes|seconds, jitter?}}
      {"cron": "*/30 * * * *"}                                   # crontab
      {"cron": {minute?, hour?, day?, day_of_week?, month?, second?}}
      {"daily_time": {"time": "HH:MM[:SS]" | [...], "day_of_week"?: "..."}}

    Triggers run in `tz` unless the block carries its own "timezone".
    """
    if not isinstance(trig_def, dict):
        raise ValueError("trigger definition must be a dict")

    present = [k for k in ("interval", "cron", "daily_time") if trig_def.get(k) is not None]
    if len(present) != 1:
        raise ValueError("exactly one of {'interval','cron','daily_time'} must be provided")
    kind = present[0]
    spec = trig_def[kind]

    def _zone(block: Any) -> ZoneInfo | None:
        name = block.get("timezone") if isinstance(block, dict) else None
        name = name or tz
        return ZoneInfo(name) if name else None

    if kind == "interval":
        if not isinstance(spec, dict):
            raise ValueError("interval must be an object with time fields")
        unknown = set(spec) - {*_INTERVAL_FIELDS, "jitter", "timezone"}
        if unknown:
            raise ValueError(f"interval has unknown field(s): {sorted(unknown)}")
        fields = {k: _non_negative_int(spec, k) for k in _INTERVAL_FIELDS if k in spec}
        fields = {k: v for k, v in fields.items() if v}
        if not fields:
            raise ValueError("interval must be greater than 0")
        jitter = _non_negative_int(spec, "jitter") if "jitter" in spec else None
        return IntervalTrigger(timezone=_zone(spec), jitter=jitter or None, **fields)

    if kind == "cron":
        if isinstance(spec, str):
            if len(spec.split()) != 5:
                raise ValueError(f"cron string must have 5 fields: {spec!r}")
            return CronTrigger.from_crontab(spec, timezone=_zone(None))
        if isinstance(spec, dict):
            allowed = {"second", "minute", "hour", "day", "day_of_week", "month", "timezone"}
            unknown = set(spec) - allowed
            if unknown:
                raise ValueError(f"cron has unknown field(s): {sorted(unknown)}")
            return CronTrigger(
                second=spec.get("second", 0),
                minute=spec.get("minute", 0),
                hour=spec.get("hour"),
                day=spec.get("day"),
                day_of_week=spec.get("day_of_week"),
                month=spec.get("month"),
                timezone=_zone(spec),
            )
        raise ValueError("cron must be a crontab string or an object")

    # daily_time
    if isinstance(spec, str):
        spec = {"time": spec}
    if not isinstance(spec, dict) or not spec.get("time"):
        raise ValueError("daily_time requires 'time'")
    unknown = set(spec) - {"time", "day_of_week", "timezone"}
    if unknown:
        raise ValueError(f"daily_time has unknown field(s): {sorted(unknown)}")

    times = spec["time"] if isinstance(spec["time"], list) else [spec["time"]]
    # One CronTrigger per exact time; a single cron with hour/minute lists would cross-multiply.
    triggers = [
        CronTrigger(hour=h, minute=m, second=s, day_of_week=spec.get("day_of_week"), timezone=_zone(spec))
        for h, m, s in sorted({_parse_hms(str(t)) for t in times})
    ]
    return triggers[0] if len(triggers) == 1 else OrTrigger(triggers)


def preview_trigger(trigger: Any, tz: Any, count: int = 5, start: datetime | None = None) -> list[datetime]:
    """Next `count` fire times strictly after `start` (for logs and tests)."""
    now = start or datetime.now(tz=tz or timezone.utc)
    prev = now
    out: list[datetime] = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        out.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return out


# ---- Helpers ----------------------------------------------------------------


def _resolve_timezone(name: str | None):
    """APScheduler 3.x is happiest with pytz zones for the scheduler itself."""
    try:
        return pytz.timezone(name or "UTC")
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (unknown tz %r)", name)
        return pytz.UTC


def _non_negative_int(spec: dict[str, Any], name: str) -> int:
    try:
        v = int(spec[name])
    except (TypeError, ValueError) as err:
        raise ValueError(f"{name} must be an integer") from err
    if v < 0:
        raise ValueError(f"{name} must be >= 0")
    return v


def _parse_hms(s: str) -> tuple[int, int, int]:
    parts = s.split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"daily_time.time must be 'HH:MM' or 'HH:MM:SS', got {s!r}")
    try:
        hh, mm = int(parts[0]), int(parts[1])
        ss = int(parts[2]) if len(parts) == 3 else 0
    except ValueError as err:
        raise ValueError(f"daily_time.time must contain integers: {s!r}") from err
    time(hh, mm, ss)  # validates ranges
    return hh, mm, ss


def _add_job(scheduler: BackgroundScheduler, spec: JobSpec) -> None:
    def _job_wrapper() -> None:
        started = _time.monotonic()
        LOG.info("Job[%s] starting (module=%s)", spec.id, spec.module)
        status = "ok"
        try:
            runner.run_module_once(
                spec.module,
                spec.kwargs,
                trigger_type="scheduled",
                job_context={"job_id": spec.id, "summary": spec.summary},
                timeout_sec=spec.timeout_sec,
            )
        except Exception:
            # Keep the scheduler alive; the runner already wrote the error record.
            LOG.exception("Job[%s] raised an exception.", spec.id)
            status = "error"
        duration = _time.monotonic() - started
        LOG.info("Job[%s] finished (%s) in %.3fs", spec.id, status, duration)
        try:
            write_activity_log({
                "source": "scheduler",
                "event": "job_run",
                "job_id": spec.id,
                "module": spec.module,
                "status": status,
                "duration_ms": int(duration * 1000),
            })
        except OSError:
            LOG.debug("write_activity_log failed for job[%s]", spec.id, exc_info=True)

    scheduler.add_job(func=_job_wrapper, trigger=spec.trigger, id=spec.id, replace_existing=True)
    job = scheduler.get_job(spec.id)
    LOG.info(
        "Registered job[%s] (module=%s, summary=%r) next_run_time=%s",
        spec.id,
        spec.module,
        spec.summary,
        getattr(job, "next_run_time", None),
    )
