"""Tests for settings loading."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from roomrelay import config as config_module
from roomrelay.config import AppConfig, get_config, load_config, reset_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("ROOMRELAY_SETTINGS", raising=False)
    reset_config()
    yield
    reset_config()


def test_missing_file_uses_defaults(tmp_path):
    cfg = load_config(settings_path=tmp_path / "absent.yaml")
    assert cfg.server.port == 3000
    assert cfg.rooms.grace_period_seconds == 60
    assert cfg.rooms.snapshot_message_limit == 50
    assert cfg.server.allowed_origins == ["*"]


def test_values_read_from_yaml(tmp_path):
    settings_file = tmp_path / "roomrelay.settings.yaml"
    settings_file.write_text(
        "server:\n"
        "  port: 8080\n"
        "rooms:\n"
        "  grace_period_seconds: 5\n"
        "  snapshot_message_limit: 20\n"
        "logging:\n"
        "  level: debug\n",
        encoding="utf-8",
    )

    cfg = load_config(settings_path=settings_file)
    assert cfg.server.port == 8080
    assert cfg.rooms.grace_period_seconds == 5
    assert cfg.rooms.snapshot_message_limit == 20
    assert cfg.logging.level == "debug"


def test_port_env_overrides_file(tmp_path, monkeypatch):
    settings_file = tmp_path / "roomrelay.settings.yaml"
    settings_file.write_text("server:\n  port: 8080\n", encoding="utf-8")
    monkeypatch.setenv("PORT", "9999")

    cfg = load_config(settings_path=settings_file)
    assert cfg.server.port == 9999


def test_settings_path_from_env(tmp_path, monkeypatch):
    settings_file = tmp_path / "custom.yaml"
    settings_file.write_text("rooms:\n  grace_period_seconds: 1.5\n", encoding="utf-8")
    monkeypatch.setenv("ROOMRELAY_SETTINGS", str(settings_file))

    assert load_config().rooms.grace_period_seconds == 1.5


def test_relative_static_dir_resolves_from_settings_dir(tmp_path):
    settings_file = tmp_path / "roomrelay.settings.yaml"
    settings_file.write_text("server:\n  static_dir: web/dist\n", encoding="utf-8")

    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.server.static_dir) == tmp_path.resolve() / "web" / "dist"


def test_absolute_static_dir_unchanged(tmp_path):
    absolute = tmp_path / "dist"
    settings_file = tmp_path / "roomrelay.settings.yaml"
    settings_file.write_text(f"server:\n  static_dir: {absolute}\n", encoding="utf-8")

    cfg = load_config(settings_path=settings_file)
    assert Path(cfg.server.static_dir) == absolute


@pytest.mark.parametrize("rooms", [
    {"grace_period_seconds": -1},
    {"snapshot_message_limit": 0},
])
def test_invalid_room_settings_rejected(rooms):
    with pytest.raises(ValidationError):
        AppConfig(rooms=rooms)


def test_outbox_limit_read_and_validated(tmp_path):
    settings_file = tmp_path / "roomrelay.settings.yaml"
    settings_file.write_text("server:\n  outbox_limit: 16\n", encoding="utf-8")
    assert load_config(settings_path=settings_file).server.outbox_limit == 16

    with pytest.raises(ValidationError):
        AppConfig(server={"outbox_limit": 0})


def test_get_config_is_cached(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module, "SETTINGS_FILE", tmp_path / "absent.yaml")
    first = get_config()
    assert get_config() is first
    reset_config()
    assert get_config() is not first
