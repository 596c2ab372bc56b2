"""Tests for configuration helpers exposed to the UI."""

from __future__ import annotations

import os

import pytest

from tutorscribe import config


def test_list_environment_settings_reflects_defaults():
    entries = {entry.env_name: entry for entry in config.list_environment_settings()}

    assert "TUTORSCRIBE_SAMPLE_RATE" in entries
    assert "TUTORSCRIBE_SONIOX_API_KEY" in entries
    assert "TUTORSCRIBE_MIC_DEVICE" in entries
    assert "TUTORSCRIBE_SYSTEM_DEVICE" in entries
    assert entries["TUTORSCRIBE_LANGUAGE_HINTS"].default == ["en", "ar"]
    assert entries["TUTORSCRIBE_SONIOX_WEBSOCKET_URL"].value == config.DEFAULT_SONIOX_WEBSOCKET_URL


def test_update_environment_setting_persists_and_reloads():
    updated = config.update_environment_setting("sample_rate", "22050")

    assert updated.sample_rate == 22050
    assert config.get_settings().sample_rate == 22050
    assert os.environ["TUTORSCRIBE_SAMPLE_RATE"] == "22050"

    env_contents = config._ENV_PATH.read_text().strip().splitlines()  # type: ignore[attr-defined]
    assert "TUTORSCRIBE_SAMPLE_RATE=22050" in env_contents


def test_clear_environment_setting_removes_override():
    config.update_environment_setting("sample_rate", "24000")
    cleared = config.clear_environment_setting("sample_rate")

    assert cleared.sample_rate == config.Settings().sample_rate
    assert "TUTORSCRIBE_SAMPLE_RATE" not in os.environ
    assert not config._ENV_PATH.exists()  # type: ignore[attr-defined]


def test_clear_environment_setting_ignores_stale_env_file():
    config._ENV_PATH.write_text("TUTORSCRIBE_SAMPLE_RATE=24000\nTUTORSCRIBE_MIC_GAIN=1.5\n")  # type: ignore[attr-defined]
    assert config.Settings().sample_rate == 24000

    cleared = config.clear_environment_setting("sample_rate")

    assert cleared.sample_rate == 16000
    assert config.get_settings().sample_rate == 16000
    assert cleared.mic_gain == 1.5
    assert config._ENV_PATH.read_text() == "TUTORSCRIBE_MIC_GAIN=1.5\n"  # type: ignore[attr-defined]


def test_invalid_value_keeps_existing_env_file():
    config.update_environment_setting("sample_rate", "24000")

    with pytest.raises(config.EnvironmentSettingError):
        config.update_environment_setting("sample_rate", "not-a-number")

    assert os.environ["TUTORSCRIBE_SAMPLE_RATE"] == "24000"
    assert config._ENV_PATH.read_text() == "TUTORSCRIBE_SAMPLE_RATE=24000\n"  # type: ignore[attr-defined]
    assert config.Settings().sample_rate == 24000


def test_invalid_value_is_rejected_and_restored():
    with pytest.raises(config.EnvironmentSettingError):
        config.update_environment_setting("sample_rate", "not-a-number")

    assert "TUTORSCRIBE_SAMPLE_RATE" not in os.environ
    assert not config._ENV_PATH.exists()  # type: ignore[attr-defined]


def test_unknown_setting_is_rejected():
    with pytest.raises(config.EnvironmentSettingError):
        config.update_environment_setting("does_not_exist", "1")


def test_language_hints_parse_from_json(monkeypatch):
    monkeypatch.setenv("TUTORSCRIBE_LANGUAGE_HINTS", '["fr", "en"]')

    assert config.Settings().language_hints == ["fr", "en"]
