import os
import sys
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from servicehub.config import DEFAULT_HISTORY_LIMIT, default_data_dir, get_settings
from servicehub.events import ChangeEvent, EventBus
from servicehub.services.marketplace_store import create_store

ENV_VARS = (
    "SERVICEHUB_DATA_DIR",
    "SERVICEHUB_VIEW_HISTORY_LIMIT",
    "SERVICEHUB_SEARCH_HISTORY_LIMIT",
    "SERVICEHUB_PERSIST_ACCOUNTS",
    "SERVICEHUB_LOG_LEVEL",
)


def _clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_environment(monkeypatch, tmp_path):
    _clean_env(monkeypatch)
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg"))
    settings = get_settings()
    assert settings.view_history_limit == DEFAULT_HISTORY_LIMIT
    assert settings.search_history_limit == DEFAULT_HISTORY_LIMIT
    assert settings.persist_accounts is False
    assert settings.log_level == "INFO"
    if os.name != "nt":
        assert settings.data_dir == tmp_path / "xdg" / "servicehub"
        assert default_data_dir() == settings.data_dir


def test_invalid_limits_fall_back(monkeypatch, tmp_path):
    _clean_env(monkeypatch)
    monkeypatch.setenv("SERVICEHUB_VIEW_HISTORY_LIMIT", "abc")
    monkeypatch.setenv("SERVICEHUB_SEARCH_HISTORY_LIMIT", "0")
    settings = get_settings(str(tmp_path))
    assert settings.view_history_limit == 50
    assert settings.search_history_limit == 50


def test_environment_overrides(monkeypatch, tmp_path):
    _clean_env(monkeypatch)
    monkeypatch.setenv("SERVICEHUB_DATA_DIR", str(tmp_path / "env-data"))
    monkeypatch.setenv("SERVICEHUB_VIEW_HISTORY_LIMIT", " 7 ")
    monkeypatch.setenv("SERVICEHUB_PERSIST_ACCOUNTS", "yes")
    monkeypatch.setenv("SERVICEHUB_LOG_LEVEL", "debug")
    settings = get_settings()
    assert settings.data_dir == Path(tmp_path / "env-data")
    assert settings.view_history_limit == 7
    assert settings.persist_accounts is True
    assert settings.log_level == "debug"

    explicit = get_settings(str(tmp_path / "explicit"))
    assert explicit.data_dir == tmp_path / "explicit"


def test_unknown_bool_keeps_default(monkeypatch, tmp_path):
    _clean_env(monkeypatch)
    monkeypatch.setenv("SERVICEHUB_PERSIST_ACCOUNTS", "maybe")
    assert get_settings(str(tmp_path)).persist_accounts is False


def test_create_store_uses_settings(monkeypatch, tmp_path):
    _clean_env(monkeypatch)
    monkeypatch.setenv("SERVICEHUB_DATA_DIR", str(tmp_path / "store"))
    monkeypatch.setenv("SERVICEHUB_VIEW_HISTORY_LIMIT", "3")
    bus = EventBus()
    seen = []
    bus.subscribe(seen.append)

    store = create_store(events=bus)
    assert Path(store.data_dir) == tmp_path / "store"
    assert (tmp_path / "store").is_dir()
    assert store.view_history_limit == 3
    assert store.events is bus

    store.register("a@x.com", "", 0, "secret1")
    for _ in range(5):
        store.add_viewed_service("2b1f6a3e-9c1d-4d5e-8f00-0a1b2c3d4e5f")
    assert seen[:2] == [ChangeEvent.CURRENT_USER, ChangeEvent.LOGGED_IN]
    assert len(store.get_my_favorites().viewed_service_ids) == 1
