from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

from .models import Topic
from .utils import getenv_str, safe_filename, truthy

DEFAULT_USER = "default_user"
DEFAULT_WATCH_CONFIG_PATH = "config.json"
MISSING_ID_POLICIES = ("bucket", "always_new")


# -----------------------------
# Exceptions
# -----------------------------
class ConfigurationError(ValueError):
    """Missing/invalid configuration, unknown user, or unknown/disabled requested topic."""


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class UserConfig:
    name: str
    topics: tuple[Topic, ...] = ()

    def find(self, topic_name: str) -> Topic | None:
        for t in self.topics:
            if t.name == topic_name:
                return t
        return None

    def enabled_topics(self) -> list[Topic]:
        return [t for t in self.topics if t.enabled]


@dataclass(frozen=True)
class WatchConfig:
    """
    Per-user topic definitions, loaded once and handed to the scheduler.

    Accepts the original config.json shape:
        {"users": {"<user>": {"projects": [{"topic": ..., "url": ..., "disabled": false}]}}}
    """

    users: dict[str, UserConfig] = field(default_factory=dict)
    source: str | None = None

    def user(self, user_id: str) -> UserConfig:
        try:
            return self.users[user_id]
        except KeyError:
            raise ConfigurationError(f"User {user_id!r} not found in configuration") from None

    @classmethod
    def from_mapping(cls, data: Any, *, source: str | None = None) -> WatchConfig:
        if not isinstance(data, dict):
            raise ConfigurationError("Watch config must be an object with a 'users' mapping.")
        users_raw = data.get("users")
        if not isinstance(users_raw, dict):
            raise ConfigurationError("Watch config requires a 'users' object.")

        users: dict[str, UserConfig] = {}
        files: dict[str, str] = {}
        for user_id, user_raw in users_raw.items():
            if not isinstance(user_raw, dict):
                raise ConfigurationError(f"User {user_id!r} must be an object.")
            items = user_raw.get("projects", user_raw.get("topics")) or []
            topics = tuple(_parse_topics(items, str(user_id)))
            _check_state_files(topics, files)
            users[str(user_id)] = UserConfig(name=str(user_id), topics=topics)
        return cls(users=users, source=source)


@dataclass
class Settings:
    """
    Runtime knobs for one listing_watch run. Built from kwargs (runner/CLI)
    with env fallbacks; see from_env_and_kwargs for the accepted keys.
    """

    user: str = DEFAULT_USER
    topic: str | None = None
    watch_config_path: str = DEFAULT_WATCH_CONFIG_PATH

    # Storage / outputs
    data_dir: str = "data"
    export_dir: str = "data"
    signal_path: str = "push_me"
    export_enabled: bool = True

    # Fetch policy
    max_concurrency: int = 3
    max_retries: int = 4
    max_timeout_sec: float = 60.0
    request_timeout_sec: float = 20.0
    max_pages: int = 0

    # Dedupe
    missing_id_policy: str = "bucket"

    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional):

            user: str = $WATCH_USER or "default_user"
            topic: str | None               # run a single topic
            watch_config_path: str = $WATCH_CONFIG_PATH or "config.json"
            data_dir: str = $WATCH_DATA_DIR or "data"
            export_dir: str = $WATCH_EXPORT_DIR or data_dir
            signal_path: str = $WATCH_SIGNAL_PATH or "push_me"
            export_enabled: bool = true
            max_concurrency: int = 3
            max_retries: int = 4
            max_timeout_sec: float = 60
            request_timeout_sec: float = 20
            max_pages: int = 0              # 0 = until an empty page
            missing_id_policy: "bucket" | "always_new" = "bucket"
        """
        kw = dict(kwargs or {})

        data_dir = str(kw.get("data_dir") or getenv_str("WATCH_DATA_DIR", "data"))
        topic = str(kw.get("topic") or "").strip() or None

        try:
            settings = cls(
                user=str(kw.get("user") or getenv_str("WATCH_USER", DEFAULT_USER)).strip(),
                topic=topic,
                watch_config_path=str(
                    kw.get("watch_config_path") or getenv_str("WATCH_CONFIG_PATH", DEFAULT_WATCH_CONFIG_PATH)
                ),
                data_dir=data_dir,
                export_dir=str(kw.get("export_dir") or getenv_str("WATCH_EXPORT_DIR", data_dir)),
                signal_path=str(kw.get("signal_path") or getenv_str("WATCH_SIGNAL_PATH", "push_me")),
                export_enabled=truthy(kw.get("export_enabled", True)),
                max_concurrency=int(_opt(kw, "max_concurrency", 3)),
                max_retries=int(_opt(kw, "max_retries", 4)),
                max_timeout_sec=float(_opt(kw, "max_timeout_sec", 60.0)),
                request_timeout_sec=float(_opt(kw, "request_timeout_sec", 20.0)),
                max_pages=int(_opt(kw, "max_pages", 0)),
                missing_id_policy=str(kw.get("missing_id_policy") or "bucket").strip().lower(),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid listing_watch settings: {e}") from e

        _validate_settings(settings)
        return settings


# -----------------------------
# Loading
# -----------------------------
def load_watch_config(path: str) -> WatchConfig:
    """
    Read a JSON or YAML watch config. Any failure to find/read/parse the file
    is a ConfigurationError: without topics there is nothing to run.
    """
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration not found: {path}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read configuration {path}: {e}") from e

    lower = path.lower()
    try:
        if lower.endswith((".yml", ".yaml")):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Configuration file is invalid: {path}: {e}") from e

    return WatchConfig.from_mapping(data, source=os.path.abspath(path))


# -----------------------------
# Helpers
# -----------------------------
def _parse_topics(value: Any, user_id: str) -> list[Topic]:
    """
    Accepts: [{"topic"|"name": ..., "url"|"source_url": ..., "disabled"|"enabled": ...}, ...]
    """
    if not isinstance(value, list):
        raise ConfigurationError(f"User {user_id!r}: 'projects' must be a list.")
    out: list[Topic] = []
    for i, item in enumerate(value):
        if not isinstance(item, dict):
            raise ConfigurationError(f"User {user_id!r} item[{i}] must be an object.")
        name = str(item.get("topic") or item.get("name") or "").strip()
        url = str(item.get("url") or item.get("source_url") or "").strip()
        if not name or not url:
            raise ConfigurationError(f"User {user_id!r} item[{i}] requires 'topic' and 'url'.")
        if "enabled" in item:
            enabled = truthy(item.get("enabled"))
        else:
            enabled = not truthy(item.get("disabled"))
        out.append(Topic(name=name, source_url=url, enabled=enabled))
    return out


def _validate_settings(s: Settings) -> None:
    if not s.user:
        raise ConfigurationError("'user' cannot be empty.")
    if s.max_concurrency <= 0:
        raise ConfigurationError("'max_concurrency' must be >= 1.")
    if s.max_retries <= 0:
        raise ConfigurationError("'max_retries' must be >= 1.")
    if s.max_timeout_sec <= 0 or s.request_timeout_sec <= 0:
        raise ConfigurationError("timeouts must be > 0.")
    if s.max_pages < 0:
        raise ConfigurationError("'max_pages' must be >= 0.")
    if s.missing_id_policy not in MISSING_ID_POLICIES:
        raise ConfigurationError(f"'missing_id_policy' must be one of {MISSING_ID_POLICIES}.")
    if not s.data_dir.strip():
        raise ConfigurationError("'data_dir' cannot be empty.")


def _opt(kw: Mapping[str, Any], key: str, default: Any) -> Any:
    """kw[key] unless missing, None or blank; an explicit 0 is kept for validation."""
    v = kw.get(key)
    if v is None or (isinstance(v, str) and not v.strip()):
        return default
    return v


def _check_state_files(topics: tuple[Topic, ...], files: dict[str, str]) -> None:
    """
    Topics share one data_dir across users, keyed by sanitised name. Two
    different names mapping to the same state file would share a seen-set.
    """
    for t in topics:
        key = safe_filename(t.name)
        other = files.setdefault(key, t.name)
        if other != t.name:
            raise ConfigurationError(
                f"Topic names {other!r} and {t.name!r} collide on state file {key}.json."
            )
