# service/runner.py
from __future__ import annotations

import importlib
import json
import logging
import os
import uuid
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any

from service.logging_utils import write_activity_log, write_error_log

log = logging.getLogger(__name__)

DEFAULT_MODULE = "modules.listing_watch"


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def _coerce_scalar(v: str) -> Any:
    low = v.strip().lower()
    if low in ("true", "yes", "on"):
        return True
    if low in ("false", "no", "off"):
        return False
    try:
        return int(v)
    except ValueError:
        pass
    try:
        return float(v)
    except ValueError:
        return v


def normalize_kwargs(kwargs: dict[str, object] | None) -> dict[str, object]:
    """
    Normalize job kwargs right before module.run(**kwargs):

      • Keys ending with "_env": the value is an ENV VAR NAME; it is replaced by
        os.getenv(<name>, "") and stored under the key without the suffix
        (e.g. {"user_env": "WATCH_USER_1"} -> {"user": "<value>"}).
      • Strings that look like JSON objects/arrays are parsed.
      • Other strings get bool/number coercion; non-strings are left alone.
    """
    if not kwargs:
        return {}

    out: dict[str, object] = {}
    for k, v in kwargs.items():
        if k.endswith("_env") and isinstance(v, str):
            out[k[: -len("_env")]] = os.getenv(v.strip(), "")
            continue
        if isinstance(v, str):
            s = v.strip()
            if (s.startswith("{") and s.endswith("}")) or (s.startswith("[") and s.endswith("]")):
                try:
                    out[k] = json.loads(s)
                    continue
                except json.JSONDecodeError:
                    pass
            out[k] = _coerce_scalar(s)
        else:
            out[k] = v
    return out


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    """Import module and return its `run` callable."""
    mod = importlib.import_module(module_path)
    run = getattr(mod, "run", None)
    if not callable(run):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return run


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def run_module_once(
    module: str = DEFAULT_MODULE,
    kwargs: dict[str, object] | None = None,
    *,
    trigger_type: str = "adhoc",
    job_context: dict[str, object] | None = None,
    timeout_sec: int | None = None,
) -> tuple[dict[str, Any], str]:
    """
    Execute a module's run(**kwargs) once.

    Returns:
        (meta, run_id) where meta is whatever the module returned (dict), or {}.
    Raises:
        Propagates exceptions from module execution (caller/CLI decides the exit code).
    """
    run_id = uuid.uuid4().hex
    context: dict[str, Any] = {
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "started_at": now_iso(),
    }
    if job_context:
        context.update({k: v for k, v in job_context.items() if k not in context})

    kw = normalize_kwargs(kwargs)
    run_callable = _resolve_callable(module)

    exc: BaseException | None = None
    meta: dict[str, Any] = {}
    t0 = datetime.now()
    # Worker thread so timeout_sec can bound the whole run; the module starts
    # its own event loop there.
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="runner")
    try:
        fut = pool.submit(run_callable, **kw)
        value = fut.result(timeout=timeout_sec) if timeout_sec else fut.result()
        meta = value if isinstance(value, dict) else {}
    except FutureTimeout:
        exc = TimeoutError(f"Module run timed out after {timeout_sec}s")
    except Exception as e:
        exc = e
    finally:
        pool.shutdown(wait=False)
    duration_ms = int((datetime.now() - t0).total_seconds() * 1000)

    record: dict[str, Any] = {
        "event": "module_run",
        "run_id": run_id,
        "module": module,
        "trigger_type": trigger_type,
        "ok": exc is None,
        "message": meta.get("message") if exc is None else str(exc),
        "duration_ms": duration_ms,
        "context": context,
        "kwargs": kw,
        "meta": meta,
    }
    try:
        write_activity_log(record)
        if exc is not None:
            write_error_log({**record, "error": repr(exc), "exception_type": type(exc).__name__})
    except OSError as e:
        log.warning("Failed to write run record: %s", e)

    if exc is not None:
        raise exc
    return meta, run_id
