from __future__ import annotations

import pytest

from config import EngineConfig, settings


def test_defaults():
    assert settings.TICK_SECONDS == 60
    assert settings.REQUEST_TIMEOUT == 12
    assert settings.STAGGER_SECONDS == 2
    assert settings.PROXY_URL == ""
    assert settings.DEFAULT_CHECK_INTERVAL_MINUTES == 15
    assert settings.MAX_VALUE_LENGTH == 150
    assert settings.MONITORING_ENABLED is True
    assert settings.ADMIN_CHAT_IDS == (123456789, 987654321)


def test_engine_config_from_settings(monkeypatch):
    monkeypatch.setenv("PROXY_URL", "https://corsproxy.io/?")
    monkeypatch.setenv("STAGGER_SECONDS", "0.5")
    settings.reload()

    config = EngineConfig.from_settings(settings)

    assert config.proxy_url == "https://corsproxy.io/?"
    assert config.stagger_seconds == 0.5
    assert config.tick_seconds == 60
    assert "User-Agent" in config.headers


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("TICK_SECONDS", "0"),
        ("REQUEST_TIMEOUT", "soon"),
        ("STAGGER_SECONDS", "-1"),
        ("DEFAULT_CHECK_INTERVAL_MINUTES", "0"),
        ("ADMIN_CHAT_IDS", "1,abc"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=name):
        settings.reload()


def test_validate_requires_token(monkeypatch):
    monkeypatch.setenv("BOT_TOKEN", "")
    settings.reload()

    with pytest.raises(ValueError, match="BOT_TOKEN"):
        settings.validate()


def test_engine_config_rejects_negative_stagger():
    with pytest.raises(ValueError):
        EngineConfig(stagger_seconds=-1)
