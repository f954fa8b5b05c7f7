# tests/conftest.py
import json
import os
import tempfile

import pytest
from freezegun import freeze_time

from modules.listing_watch.lib import config as lw_config
from modules.listing_watch.lib.models import AdRecord


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (network calls or external services).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="lw-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    for name in ("WATCH_USER", "WATCH_CONFIG_PATH", "WATCH_DATA_DIR", "WATCH_EXPORT_DIR", "WATCH_SIGNAL_PATH"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    yield


@pytest.fixture
def frozen_day():
    with freeze_time("2025-03-14T09:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Watch config + settings
# ---------------------------------------------------------------------
@pytest.fixture
def write_watch_config(tmp_path):
    """Return a writer: write_watch_config({"user": [("topic", "url", disabled), ...]}) -> path."""

    def _write(users: dict, name: str = "config.json"):
        data = {
            "users": {
                user: {
                    "projects": [
                        {"topic": t, "url": u, "disabled": disabled} for t, u, disabled in projects
                    ]
                }
                for user, projects in users.items()
            }
        }
        p = tmp_path / name
        p.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        return p

    return _write


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides):
        kw = {
            "data_dir": str(tmp_path / "data"),
            "signal_path": str(tmp_path / "push_me"),
            "watch_config_path": str(tmp_path / "config.json"),
        }
        kw.update(overrides)
        return lw_config.Settings.from_env_and_kwargs(kw)

    return _make


# ---------------------------------------------------------------------
# Fakes for the fetch/extract seam
# ---------------------------------------------------------------------
class FakeFetcher:
    """
    Serves canned page bodies keyed by URL. Unknown URLs return "" (an empty
    page). A URL mapped to an Exception instance raises it.
    """

    def __init__(self, pages=None, *, tracker=None, delay=0.0):
        self.pages = dict(pages or {})
        self.calls: list[str] = []
        self.closed = False
        self.tracker = tracker
        self.delay = delay

    async def fetch(self, url: str) -> str:
        import asyncio

        self.calls.append(url)
        if self.tracker is not None:
            self.tracker.enter()
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            value = self.pages.get(url, "")
        finally:
            if self.tracker is not None:
                self.tracker.leave()
        if isinstance(value, Exception):
            raise value
        return value

    async def close(self) -> None:
        self.closed = True


class InFlightTracker:
    def __init__(self):
        self.current = 0
        self.peak = 0

    def enter(self):
        self.current += 1
        self.peak = max(self.peak, self.current)

    def leave(self):
        self.current -= 1


def fake_extractor(body: str, *, page_url=None):
    """Body is a comma-separated list of identifiers; "" means an empty page."""
    return [AdRecord(identifier=i, link=f"https://example.test/{i}") for i in body.split(",") if i]


@pytest.fixture
def fetcher_cls():
    return FakeFetcher


@pytest.fixture
def tracker():
    return InFlightTracker()


@pytest.fixture
def extractor():
    return fake_extractor
