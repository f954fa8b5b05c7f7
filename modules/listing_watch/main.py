from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.logging_bridge import activity as log_activity


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'listing_watch' module.

    Accepts kwargs (from scheduler/runner/CLI), including:
      user: str = "default_user"
      topic: str | None = None            # only this topic (must exist and be enabled)
      watch_config_path: str = "config.json"
      data_dir: str = "data"
      signal_path: str = "push_me"
      max_concurrency: int = 3

    Returns:
      meta dict: {"message", "user", "new_total", "failed", "topics", ...}

    Raises:
      ConfigurationError for missing config, unknown user or unknown/disabled topic.
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "listing_watch.main",
        "op": "start",
        "user": settings.user,
        "topic": settings.topic,
        "watch_config_path": settings.watch_config_path,
        "data_dir": settings.data_dir,
    })

    return _run_engine(settings)
