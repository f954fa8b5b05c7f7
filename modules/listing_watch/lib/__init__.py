# modules/listing_watch/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigurationError, Settings, WatchConfig, load_watch_config
from .engine import TopicScheduler, run_once
from .http_client import FetchFailure, ResilientFetcher
from .models import AdRecord, RunResult, Topic, TopicOutcome
from .store import PersistenceFailure, SeenSetStore, StateCorruption

__all__ = [
    "AdRecord",
    "ConfigurationError",
    "FetchFailure",
    "PersistenceFailure",
    "ResilientFetcher",
    "RunResult",
    "SeenSetStore",
    "Settings",
    "StateCorruption",
    "Topic",
    "TopicOutcome",
    "TopicScheduler",
    "WatchConfig",
    "load_watch_config",
    "run_once",
]
