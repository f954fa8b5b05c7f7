import pytest

from modules.listing_watch.lib.config import (
    ConfigurationError,
    Settings,
    WatchConfig,
    load_watch_config,
)


def test_load_original_shape(write_watch_config):
    path = write_watch_config({
        "default_user": [("rentals", "https://x/rent", False), ("sales", "https://x/sale", True)],
        "other": [],
    })
    cfg = load_watch_config(str(path))
    user = cfg.user("default_user")
    assert [t.name for t in user.topics] == ["rentals", "sales"]
    assert [t.name for t in user.enabled_topics()] == ["rentals"]
    assert cfg.user("other").topics == ()


def test_load_yaml(tmp_path):
    p = tmp_path / "watch.yaml"
    p.write_text(
        "users:\n"
        "  me:\n"
        "    topics:\n"
        "      - name: flats\n"
        "        source_url: https://x/flats\n"
        "        enabled: false\n",
        encoding="utf-8",
    )
    (topic,) = load_watch_config(str(p)).user("me").topics
    assert topic.name == "flats"
    assert topic.source_url == "https://x/flats"
    assert topic.enabled is False


def test_missing_file_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="Configuration not found"):
        load_watch_config(str(tmp_path / "absent.json"))


def test_invalid_json_is_configuration_error(tmp_path):
    p = tmp_path / "config.json"
    p.write_text("{oops", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_watch_config(str(p))


@pytest.mark.parametrize(
    "data",
    [
        [],
        {"nousers": {}},
        {"users": {"u": {"projects": "nope"}}},
        {"users": {"u": {"projects": [{"topic": "t"}]}}},
    ],
)
def test_malformed_shapes_rejected(data):
    with pytest.raises(ConfigurationError):
        WatchConfig.from_mapping(data)


def test_colliding_topic_state_files_rejected():
    data = {"users": {
        "u": {"projects": [{"topic": "a/b", "url": "https://x"}]},
        "v": {"projects": [{"topic": "a_b", "url": "https://y"}]},
    }}
    with pytest.raises(ConfigurationError, match="collide"):
        WatchConfig.from_mapping(data)


def test_same_topic_name_for_two_users_is_allowed():
    cfg = WatchConfig.from_mapping({"users": {
        "u": {"projects": [{"topic": "rentals", "url": "https://x"}]},
        "v": {"projects": [{"topic": "rentals", "url": "https://y"}]},
    }})
    assert cfg.user("v").find("rentals").source_url == "https://y"


def test_blank_numeric_setting_uses_default():
    assert Settings.from_env_and_kwargs({"max_retries": ""}).max_retries == 4


def test_settings_defaults():
    s = Settings.from_env_and_kwargs({})
    assert s.user == "default_user"
    assert s.topic is None
    assert s.max_concurrency == 3
    assert s.data_dir == "data"
    assert s.export_dir == "data"
    assert s.signal_path == "push_me"
    assert s.missing_id_policy == "bucket"


def test_settings_env_fallbacks(monkeypatch):
    monkeypatch.setenv("WATCH_USER", "alice")
    monkeypatch.setenv("WATCH_DATA_DIR", "/tmp/state")
    s = Settings.from_env_and_kwargs({"topic": " rentals "})
    assert s.user == "alice"
    assert s.topic == "rentals"
    assert s.export_dir == "/tmp/state"


def test_settings_kwargs_win_over_env(monkeypatch):
    monkeypatch.setenv("WATCH_USER", "alice")
    assert Settings.from_env_and_kwargs({"user": "bob"}).user == "bob"


@pytest.mark.parametrize(
    "kw",
    [
        {"max_concurrency": -1},
        {"max_pages": -2},
        {"missing_id_policy": "sometimes"},
        {"max_retries": "many"},
        {"max_retries": 0},
        {"max_concurrency": 0},
        {"max_timeout_sec": 0},
        {"request_timeout_sec": 0},
    ],
)
def test_settings_validation(kw):
    with pytest.raises(ConfigurationError):
        Settings.from_env_and_kwargs(kw)
