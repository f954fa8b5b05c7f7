import json
import re
import time

import pytest

from modules.listing_watch.lib.config import ConfigurationError
from service import runner
from service.logging_utils import log_path_for_today


def _records(prefix):
    path = log_path_for_today(prefix)
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f]


@pytest.fixture
def fake_engine(monkeypatch):
    seen = {}

    def _engine(settings):
        seen["settings"] = settings
        return {"message": "2 new ads across 1 topics for default_user", "new_total": 2}

    monkeypatch.setattr("modules.listing_watch.main._run_engine", _engine)
    return seen


def test_normalize_kwargs(monkeypatch):
    monkeypatch.setenv("MY_WATCH_USER", "alice")
    out = runner.normalize_kwargs({
        "user_env": "MY_WATCH_USER",
        "max_pages": "5",
        "export_enabled": "false",
        "extra": '{"a": 1}',
        "topic": "rentals",
        "already": 3,
    })
    assert out == {
        "user": "alice",
        "max_pages": 5,
        "export_enabled": False,
        "extra": {"a": 1},
        "topic": "rentals",
        "already": 3,
    }


def test_run_module_once_returns_meta_and_logs(fake_engine):
    meta, run_id = runner.run_module_once(
        kwargs={"user": "default_user", "max_concurrency": "2"},
        trigger_type="scheduled",
        job_context={"job_id": "hourly"},
    )
    assert meta["new_total"] == 2
    assert re.match(r"^[a-f0-9]{32}$", run_id)
    assert fake_engine["settings"].max_concurrency == 2

    rec = [r for r in _records("activity-test") if r.get("event") == "module_run"][-1]
    assert rec["ok"] is True
    assert rec["run_id"] == run_id
    assert rec["trigger_type"] == "scheduled"
    assert rec["context"]["job_id"] == "hourly"
    assert rec["message"].startswith("2 new ads")


def test_run_module_once_reraises_and_writes_error_record(tmp_path):
    with pytest.raises(ConfigurationError):
        runner.run_module_once(kwargs={"watch_config_path": str(tmp_path / "absent.json")})

    (err,) = _records("error-test")
    assert err["ok"] is False
    assert err["exception_type"] == "ConfigurationError"
    assert "Configuration not found" in err["message"]


def test_run_module_once_timeout(monkeypatch):
    def slow(**kwargs):
        time.sleep(1.5)
        return {}

    monkeypatch.setattr(runner, "_resolve_callable", lambda module: slow)
    with pytest.raises(TimeoutError):
        runner.run_module_once(timeout_sec=1)


def test_module_without_run_is_rejected():
    with pytest.raises(AttributeError):
        runner.run_module_once(module="service.logging_utils")
