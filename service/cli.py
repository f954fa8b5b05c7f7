# service/cli.py
"""
User-facing command-line entrypoints.

Subcommands
-----------
run [USER] [--topic T] [--watch-config PATH] [--data-dir DIR] [--kwargs k=v ...]
    - Runs listing_watch once via runner.run_module_once(...)
    - Prints a per-topic summary; exit 0 even when some topics failed

serve
    - Starts the APScheduler service loop via service.scheduler.start()
    - Registers signal handlers for graceful shutdown

list-topics [USER] [--watch-config PATH]
    - Prints the user's topics and whether each is enabled

validate-config
    - Loads/validates the service config and returns nonzero on error
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
from collections.abc import Iterable
from typing import Any

from modules.listing_watch.lib.config import (
    DEFAULT_USER,
    ConfigurationError,
    load_watch_config,
)
from modules.listing_watch.lib.utils import getenv_str
from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


# -------------------------- Utility / glue code ------------------------------
def _parse_kv_pairs(pairs: Iterable[str]) -> dict[str, Any]:
    """
    Parse key=value strings into a dict.
    - Values that look like JSON (true/false/null/number/object/array) are parsed.
    - Otherwise keep as raw strings.
    """
    out: dict[str, Any] = {}
    for raw in pairs:
        if "=" not in raw:
            raise argparse.ArgumentTypeError(f"--kwargs item must be key=value (got {raw!r})")
        k, v = raw.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            raise argparse.ArgumentTypeError(f"Invalid key in --kwargs item {raw!r}")
        try:
            out[k] = json.loads(v)
        except json.JSONDecodeError:
            out[k] = v
    return out


def _print_table(rows: Iterable[tuple[str, str]], headers: tuple[str, str] = ("ID", "DETAILS")) -> None:
    """Very simple two-column table printer."""
    rows = list(rows)
    w0 = max(len(headers[0]), *(len(r[0]) for r in rows)) if rows else len(headers[0])
    w1 = max(len(headers[1]), *(len(r[1]) for r in rows)) if rows else len(headers[1])
    sep = f"+-{'-' * w0}-+-{'-' * w1}-+"
    print(sep)
    print(f"| {headers[0].ljust(w0)} | {headers[1].ljust(w1)} |")
    print(sep)
    for c0, c1 in rows:
        print(f"| {c0.ljust(w0)} | {c1.ljust(w1)} |")
    print(sep)


def _topic_rows(meta: dict[str, Any]) -> list[tuple[str, str]]:
    rows = []
    for name, info in sorted((meta.get("topics") or {}).items()):
        if info.get("status") == "ok":
            detail = f"ok: {info.get('new', 0)} new / {info.get('scraped', 0)} scraped"
            if info.get("export_path"):
                detail += f" -> {info['export_path']}"
        else:
            detail = f"FAILED: {info.get('error')}"
        rows.append((name, detail))
    return rows


# ------------------------------ Subcommands ----------------------------------
def cmd_run(args: argparse.Namespace) -> int:
    kwargs = _parse_kv_pairs(args.kwargs or [])
    if args.user:
        kwargs["user"] = args.user
    if args.topic:
        kwargs["topic"] = args.topic
    if args.watch_config:
        kwargs["watch_config_path"] = args.watch_config
    if args.data_dir:
        kwargs["data_dir"] = args.data_dir
    LOG.debug("Run listing_watch with kwargs=%s", kwargs)

    try:
        meta, run_id = _runner.run_module_once(module=args.module, kwargs=kwargs)
    except KeyboardInterrupt:
        return 130
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        LOG.exception("Run failed: %s", e)
        print(f"FAILURE: {e}", file=sys.stderr)
        return 1

    rows = _topic_rows(meta)
    if rows:
        _print_table(rows, headers=("TOPIC", "RESULT"))
    print(f"DONE [{run_id[:8]}]: {meta.get('message', 'run completed')}")
    return 0


def cmd_list_topics(args: argparse.Namespace) -> int:
    user_id = args.user or getenv_str("WATCH_USER", DEFAULT_USER)
    path = args.watch_config or getenv_str("WATCH_CONFIG_PATH", "config.json")
    try:
        user = load_watch_config(path).user(user_id)
    except ConfigurationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    rows = [(t.name, f"{'enabled' if t.enabled else 'disabled'}  {t.source_url}") for t in user.topics]
    if not rows:
        print(f"No topics configured for {user_id}.")
        return 0
    _print_table(rows, headers=("TOPIC", "DETAILS"))
    return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        for job in cfg["jobs"]:
            _scheduler.build_trigger(job["trigger"], cfg.get("timezone"))
    except KeyboardInterrupt:
        return 130
    except (_config_schema.ConfigError, ValueError) as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    print(f"OK: configuration is valid ({len(cfg['jobs'])} job(s)).")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler loop until a termination signal is received."""
    stop_event = threading.Event()
    controller = None

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        controller = _scheduler.start(config_path=args.config)
        L.write_activity_log({"event": "serve_start", "jobs": list(controller.get_job_ids())})

        # Short waits so signals are handled promptly.
        while not stop_event.wait(0.3):
            pass
        return 0
    except KeyboardInterrupt:
        return 130
    except (_config_schema.ConfigError, ValueError) as e:
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    finally:
        if controller is not None:
            controller.stop()
            controller.join(timeout=10.0)
            L.write_activity_log({"event": "serve_stop"})


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Listing watch command-line tools",
    )
    p.add_argument(
        "--config",
        help="Path to the service (jobs) config file (falls back to CONFIG_PATH env).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # run
    sp = sub.add_parser("run", help="Run listing_watch once for a user.")
    sp.add_argument("user", nargs="?", help=f"User id from the watch config (default: {DEFAULT_USER}).")
    sp.add_argument("--topic", help="Run only this topic (must exist and be enabled).")
    sp.add_argument("--watch-config", help="Path to the watch (topics) config.")
    sp.add_argument("--data-dir", help="Directory for seen-set files.")
    sp.add_argument("--module", default=_runner.DEFAULT_MODULE, help=argparse.SUPPRESS)
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        help="Extra keyword arguments for the module (JSON values supported).",
    )
    sp.set_defaults(func=cmd_run)

    # serve
    sp = sub.add_parser("serve", help="Run the scheduler loop.")
    sp.set_defaults(func=cmd_serve)

    # list-topics
    sp = sub.add_parser("list-topics", help="Print the topics configured for a user.")
    sp.add_argument("user", nargs="?", help=f"User id (default: {DEFAULT_USER}).")
    sp.add_argument("--watch-config", help="Path to the watch (topics) config.")
    sp.set_defaults(func=cmd_list_topics)

    # validate-config
    sp = sub.add_parser("validate-config", help="Verify service configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
